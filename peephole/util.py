import re
import sys
import time

from contextlib import contextmanager
from dataclasses import dataclass, field

def popcount(x):
    return bin(x).count('1')

def mask(width):
    return (1 << width) - 1

@contextmanager
def timer():
    start = time.perf_counter_ns()
    yield lambda: time.perf_counter_ns() - start

@dataclass(frozen=True)
class Debug:
    what: str = field(kw_only=True, default='')
    """Regular expression of the debug tags to print (e.g. 'fail|time')."""

    def __call__(self, tag, *args):
        if self.what and re.match(self.what, str(tag)):
            print(*args, file=sys.stderr)

def no_debug(tag, *args):
    pass

@dataclass(frozen=True)
class HasDebug:
    debug: Debug = field(kw_only=True, default_factory=Debug)
    """Debug output."""

def find_start_interval(eval, is_lt, start=1, debug=no_debug):
    l, u = 0, start
    debug('opt', f'opt bounds: [{l}, {u}]')
    while not is_lt(eval(u)):
        l, u = u, u * 2
        debug('opt', f'opt bounds [{l}, {u}]')
    return l, u

def binary_search(eval, is_lt, l, r, debug=no_debug):
    """Finds the largest m in [l, r] with not is_lt(eval(m)).

    Assumes that is_lt(eval(m)) is monotone in m and false for l.
    """
    results = {}
    while l != r:
        debug('opt', f'obj bounds [{l}, {r}]')
        m = l + (r - l + 1) // 2
        res = eval(m)
        results[m] = res
        if is_lt(res):
            r = m - 1
        else:
            l = m
    return l, results
