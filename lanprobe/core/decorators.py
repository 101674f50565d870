"""Decorators shared by the scanner classes."""

import inspect
import functools


def job_tracker(func):
    """
    Count running and finished calls per method on ``self.job_stats``.

    Works for plain and ``async`` methods. The instance must expose a
    ``job_stats`` attribute (it may start out empty or None).
    """
    fxn = func.__name__

    def init_job_tracker(class_instance):
        if not class_instance.job_stats:
            class_instance.job_stats = {'running': {}, 'finished': {}, 'peak': {}}
        running = class_instance.job_stats.setdefault('running', {})
        finished = class_instance.job_stats.setdefault('finished', {})
        peak = class_instance.job_stats.setdefault('peak', {})

        running[fxn] = running.get(fxn, 0)
        finished[fxn] = finished.get(fxn, 0)
        peak[fxn] = peak.get(fxn, 0)

        return running, finished, peak

    def start(class_instance):
        running, finished, peak = init_job_tracker(class_instance)
        running[fxn] += 1
        peak[fxn] = max(peak[fxn], running[fxn])
        return running, finished

    def stop(running, finished):
        running[fxn] -= 1
        finished[fxn] += 1

    if inspect.iscoroutinefunction(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            running, finished = start(args[0])
            try:
                return await func(*args, **kwargs)
            finally:
                stop(running, finished)
        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        running, finished = start(args[0])
        try:
            return func(*args, **kwargs)
        finally:
            stop(running, finished)
    return wrapper
