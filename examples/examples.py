"""Examples demonstrating single-line, async and multiline progress bars"""

import time
import random
import threading

from pbar import (
    progress,
    ProgressBar,
    Theme,
)


def work(index):
    delay = random.uniform(1.0, 7.0)
    time.sleep(delay)
    print(f"work done {index} in {delay:.1f}s")


def example_0():
    print("=== Example 0: Multiline bar on the bottom row with workers printing above it ===")

    bar = ProgressBar.multiline(8)
    lock = threading.Lock()

    def worker(index):
        print("start working")
        try:
            work(index)
        finally:
            # Direct mode is not synchronized, so workers share one lock
            with lock:
                bar.add(1)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(1, bar.total + 1)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    bar.close()


def example_1():
    print("=== Example 1: Async bar fed by concurrent producers ===")

    with ProgressBar.asynchronous(40) as bar:
        def producer():
            for _ in range(10):
                time.sleep(random.uniform(0.05, 0.2))
                bar.add_async(1)

        threads = [threading.Thread(target=producer) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()


def example_2():
    print("=== Example 2: Wrapping an iterable ===")

    for _ in progress(range(50), theme=Theme.minimal(), done_glyph='=', ongoing_glyph='.'):
        time.sleep(0.05)


def example_3():
    print("=== Example 3: Over-large increments are clamped at 100% ===")

    with ProgressBar(10, on_complete=lambda: print("all done")) as bar:
        for _ in range(4):
            time.sleep(0.3)
            bar.add(3)


if __name__ == "__main__":
    import logging

    logging.basicConfig(level=logging.DEBUG)

    for i in range(0, 3 + 1):
        if i != 0:
            time.sleep(1)
        globals()[f"example_{i}"]()
