"""Examples of a bounded bar and an unbounded spinner"""

import sys
import time

from ttybar import ProgressBar, progress


def example_bar():
    print("=== Example 1: Bounded bar with status ===")

    bar = ProgressBar(100, 0.5)
    bar.set_status("Downloading File")
    bar.start()

    for i in range(100 + 1):
        time.sleep(0.05)
        bar.increment()

        if i == 50:
            bar.set_status("Half way there!")

    bar.complete()


def example_spinner():
    print("=== Example 2: Spinner when the total is unknown ===")

    def items():
        for i in range(40):
            time.sleep(0.05)
            yield i

    for _ in progress(items(), status="Scanning", redraw_interval=0.1):
        pass


def example_stdout():
    print("=== Example 3: Context manager on stdout ===")

    with ProgressBar(50, 0.1, stream=sys.stdout) as bar:
        for _ in range(50):
            time.sleep(0.02)
            bar.increment()


if __name__ == '__main__':
    example_bar()
    example_spinner()
    example_stdout()
