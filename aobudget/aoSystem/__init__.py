import os
import numpy as np
import scipy.fft as fft

try:
    trapz = np.trapezoid
except AttributeError:
    trapz = np.trapz


class ConfigurationError(ValueError):
    """ Missing or invalid parameter, unknown mode, model, WFS or PSD component."""
    pass


class NumericalError(ArithmeticError):
    """ Non-finite flux, PSD or variance, or a search that could not bracket a minimum."""
    pass


class fftEnvironment:
    """
    Process-scoped FFT setup: number of worker threads handed to scipy.fft.
    Created once at start-up and passed to the components that transform
    time series, instead of being read as a module global.
    """

    def __init__(self, workers=None):
        if workers is None:
            workers = int(os.environ.get('AOBUDGET_FFT_WORKERS', 1))
        if workers == 0:
            raise ConfigurationError('fftEnvironment: workers cannot be 0')
        self.workers = workers

    def irfft(self, x, n=None, axis=-1):
        return fft.irfft(x, n=n, axis=axis, workers=self.workers)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def __repr__(self):
        return 'fftEnvironment(workers=%d)'%self.workers


def checkFinite(value, what):
    """Raise a NumericalError if value holds NaN or inf."""
    if not np.all(np.isfinite(value)):
        raise NumericalError('%s is not finite'%what)
    return value
