# -*- coding: utf-8 -*-
"""
Spatial-frequency grid tools, filters and image helpers.
"""

# Libraries
import numpy as np
import scipy.special as spc
from scipy.signal import fftconvolve

from aobudget.aoSystem import fft

#%%  FOURIER TOOLS

def fftCorrel(x,y,fftenv=None):
    """Circular cross-correlation of two 1D arrays"""
    nPts = x.shape[0]
    workers = None if fftenv is None else fftenv.workers
    return fft.ifft(fft.fft(x,workers=workers)*np.conj(fft.fft(y,workers=workers)),workers=workers)/nPts

def mode_grid(mnMax):
    """ Integer spatial frequency indices (m,n) of a (2 mnMax+1)^2 grid
    centered on (0,0); m runs along the first axis."""
    mnMax = int(mnMax)
    m,n = np.mgrid[-mnMax:mnMax+1, -mnMax:mnMax+1]
    return m,n

def in_support(m,n,mnMax,circular=False):
    """ True where (m,n) is inside the square or circular support of
    half-width mnMax. (0,0) is excluded."""
    m = np.asarray(m)
    n = np.asarray(n)
    if circular:
        msk = m**2 + n**2 <= mnMax**2
    else:
        msk = (np.abs(m) <= mnMax) & (np.abs(n) <= mnMax)
    return msk & ~((m == 0) & (n == 0))

def half_plane(m,n):
    """ True for the half-plane m > 0 or (m == 0 and n > 0)."""
    m = np.asarray(m)
    n = np.asarray(n)
    return (m > 0) | ((m == 0) & (n > 0))

def mode_list(mnMax,circular=False):
    """ Sorted list of (m,n) tuples inside the support."""
    m,n = mode_grid(mnMax)
    msk = in_support(m,n,mnMax,circular=circular)
    return sorted(zip(m[msk].tolist(),n[msk].tolist()))

def besselj__n(n, z):
    if n==0:
        return spc.j0(z)
    elif n==1:
        return spc.j1(z)
    else:
        return 2*(n-1)*besselj__n(int(n)-1, z)/z - besselj__n(int(n)-2, z)

def sombrero(x):
    """ J1(x)/x, 1/2 at x = 0"""
    x = np.asarray(x,dtype=float)
    out = 0.5*np.ones(x.shape)
    idx = x!=0
    out[idx] = spc.j1(x[idx])/x[idx]
    return out

def tiltFilter(D,k):
    """ Piston and tilt removal filter for a circular pupil of diameter D
    at spatial frequency k in cycles/m, from Sasiela 93"""
    x = np.atleast_1d(np.pi*D*np.asarray(k,dtype=float))
    out = np.zeros(x.shape)
    idx = x > 1e-8
    xi = x[idx]
    out[idx] = 1 - (2*spc.j1(xi)/xi)**2 - (4*besselj__n(2,xi)/xi)**2
    out[out < 0] = 0
    return out.reshape(np.shape(k))

def airyPattern(r):
    """ Normalized Airy pattern at radius r in lambda/D units"""
    return (2*sombrero(np.pi*np.asarray(r,dtype=float)))**2

def airyPSF(shape):
    """ Airy pattern sampled at lambda/D and centered on the array center"""
    nx,ny = shape
    x,y = np.mgrid[0:nx,0:ny].astype(float)
    r = np.hypot(x - np.floor(0.5*nx), y - np.floor(0.5*ny))
    return airyPattern(r)

def varmapToImage(varMap,psf):
    """ Convert a variance map sampled at lambda/D into a halo image by
    convolution with the PSF. Output has the shape of varMap."""
    return fftconvolve(varMap,psf,mode='same')

#%% ATMOSPHERIC REFRACTION

def refractionIndex(wvl):
    ''' Refraction index -1 as a fonction of the wavelength.
    Valid for lambda between 0.2 and 4µm with 1 atm of pressure and 15 degrees Celsius
        Inputs : wavelength in meters
        Outputs : n-1
    '''
    c1 = 64.328
    c2 = 29498.1
    c3 = 146.0
    c4 = 255.4
    c5 = 41.0
    wvlRef = wvl*1e6
    return 1e-6 * (c1 +  c2/(c3-1.0/wvlRef**2) + c4/(c5 - 1.0/wvlRef**2) )
