#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Adaptive optics system model: per-mode variance terms C0..C7 from Guyon (2005),
error budget, Maréchal Strehl and actuator spacing / integration time optimization.

All variances are in rad^2 at the science wavelength.
"""

# IMPORTING PYTHON LIBRAIRIES
import math
import numpy as np
import scipy.optimize as spo

# IMPORTING AOBUDGET MODULES
from aobudget.aoSystem import ConfigurationError, NumericalError, checkFinite
from aobudget.aoSystem.atmosphere import atmosphere
from aobudget.aoSystem.sensor import sensor
from aobudget.aoSystem.spectrum import vonKarmanSpectrum
import aobudget.aoSystem.FourierUtils as FourierUtils

ERROR_TERMS = ('measurement','timeDelay','fitting','chromScintOPD',
               'chromIndex','dispAnisoOPD','ncp')

# region over which each variance term applies
_REGIONS = {0:'uncontrolled', 1:'all', 2:'controlled', 3:'controlled',
            4:'controlled', 5:'controlled', 6:'controlled', 7:'controlled'}

#%%
class aoSystem():
    """
    Adaptive optics system, gathering the atmosphere, the spatial PSD model,
    the wavefront sensor and the system parameters:
        - D: telescope diameter [m]
        - d_min: minimum actuator spacing [m]
        - optd: optimize the actuator spacing, optd_delta sets the step
        - F0: zero-magnitude photon flux [photons/s]
        - lam_wfs, npix_wfs, ron_wfs, Fbg, bin_npix: WFS wavelength [m],
          pixel count, read noise [photons/read], background [photons/pix/s]
          and pixel re-binning with the actuator spacing
        - tauWFS, minTauWFS, maxTauWFS, deltaTau, optTau: WFS integration
          time, its bounds and the loop delay [s]
        - lam_sci: science wavelength [m], zeta: zenith distance [rad]
        - fit_mn_max: largest spatial frequency index in the analysis
        - ncp_wfe, ncp_alpha: non-common-path variance [rad^2] and PSD index
        - starMag: guide star magnitude
        - circularLimit: circular instead of square spatial frequency support
    """

    # DEPENDANT VARIABLES DEFINITION
    @property
    def secZeta(self):
        return 1/np.cos(self.zeta)

    @property
    def wfs(self):
        return self.p_wfs

    @wfs.setter
    def wfs(self,val):
        if not isinstance(val,sensor):
            val = sensor(val)
        self.p_wfs = val

    @property
    def D(self):
        return self.p_D

    @D.setter
    def D(self,val):
        self.p_D = val
        if hasattr(self,'psd'):
            self.psd.D = val

    def __init__(self, atm=None, psd=None, wfs='idealWFS', D=6.5, d_min=6.5/48.,
                 optd=False, optd_delta=1.0, F0=4.2e10, lam_wfs=0.851e-6, npix_wfs=9024,
                 ron_wfs=0.57, bin_npix=False, Fbg=0.0, tauWFS=1/3622., minTauWFS=1/3622.,
                 maxTauWFS=1.0, deltaTau=0.0, optTau=False, lam_sci=0.656e-6, zeta=0.0,
                 fit_mn_max=24, ncp_wfe=0.0, ncp_alpha=2.0, starMag=5.0, circularLimit=False,
                 verbose=False):

        if atm is None:
            atm = atmosphere(0.5e-6, 0.17, [1.0], [0.0], wSpeed=10.0, wDir=0.0, L0=25.0)
        if psd is None:
            psd = vonKarmanSpectrum()

        self.atm           = atm
        self.psd           = psd
        self.wfs           = wfs
        self.D             = D
        self.d_min         = d_min
        self.optd          = optd
        self.optd_delta    = optd_delta
        self.F0            = F0
        self.lam_wfs       = lam_wfs
        self.npix_wfs      = npix_wfs
        self.ron_wfs       = ron_wfs
        self.bin_npix      = bin_npix
        self.Fbg           = Fbg
        self.tauWFS        = tauWFS
        self.minTauWFS     = minTauWFS
        self.maxTauWFS     = maxTauWFS
        self.deltaTau      = deltaTau
        self.optTau        = optTau
        self.lam_sci       = lam_sci
        self.zeta          = zeta
        self.fit_mn_max    = fit_mn_max
        self.ncp_wfe       = ncp_wfe
        self.ncp_alpha     = ncp_alpha
        self.starMag       = starMag
        self.circularLimit = circularLimit
        self.verbose       = verbose

    #%% MODELS
    def loadModel(self,name):
        """ Load one of the named parameter sets: Guyon2005, MagAOX, GMagAOX"""
        from aobudget.aoSystem.configFile import loadModel
        return loadModel(self,name)

    def loadGuyon2005(self):
        return self.loadModel('Guyon2005')

    def loadMagAOX(self):
        return self.loadModel('MagAOX')

    def loadGMagAOX(self):
        return self.loadModel('GMagAOX')

    #%% CHECKS
    def checkConfig(self):
        """ Raise a ConfigurationError if a parameter needed by the variance terms is invalid"""
        if not self.fit_mn_max > 0:
            raise ConfigurationError('fit_mn_max must be > 0, got {}'.format(self.fit_mn_max))
        if not self.D > 0:
            raise ConfigurationError('D must be > 0, got {}'.format(self.D))
        if not self.d_min > 0:
            raise ConfigurationError('d_min must be > 0, got {}'.format(self.d_min))
        for name in ('lam_sci','lam_wfs'):
            if not getattr(self,name) > 0:
                raise ConfigurationError('{} must be > 0, got {}'.format(name,getattr(self,name)))
        if not abs(self.zeta) < np.pi/2:
            raise ConfigurationError('zeta must be smaller than pi/2 in absolute value')
        if self.optd and not self.optd_delta > 0:
            raise ConfigurationError('optd_delta must be > 0')

    #%% PHOTOMETRY
    def Fg(self,starMag=None):
        """ Guide star photon flux [photons/s]"""
        if starMag is None:
            starMag = self.starMag
        if not self.F0 > 0:
            raise ConfigurationError('F0 must be > 0, got {}'.format(self.F0))
        with np.errstate(over='ignore'):
            flux = self.F0*10**(-0.4*np.asarray(starMag,dtype=float))
        if not np.all(np.isfinite(flux)) or np.any(flux <= 0):
            raise NumericalError('The flux of a magnitude {} star is not a usable number'.format(starMag))
        return float(flux) if np.ndim(flux) == 0 else flux

    def beta_p(self,m,n):
        return self.wfs.beta_p(m,n)

    #%% SUPPORT
    def mnCon(self,d=None):
        """ Half-width of the controlled region in spatial frequency index"""
        if d is None:
            d = self.d_opt()
        return self.D/d/2

    def inFit(self,m,n):
        return FourierUtils.in_support(m,n,self.fit_mn_max,circular=self.circularLimit)

    def controlled(self,m,n,d=None):
        return FourierUtils.in_support(m,n,self.mnCon(d),circular=self.circularLimit)

    #%% PER-MODE VARIANCES
    def layerVariance(self,m,n,component=None):
        """ Per-layer variance of the (m,n) Fourier mode, shape (nL,) + m.shape"""
        k = np.hypot(m,n)/self.D
        with np.errstate(divide='ignore',invalid='ignore'):
            return self.psd.layerSpectrum(self.atm,k,self.lam_sci,secZeta=self.secZeta,
                                          lam_wfs=self.lam_wfs,component=component)/self.D**2

    def modeVariance(self,m,n,component=None):
        """ Uncorrected variance of the (m,n) Fourier mode"""
        return np.sum(self.layerVariance(m,n,component=component),axis=0)

    def measurementErrorMode(self,m,n,tau=None,d=None):
        """ Photon, background and read noise variance of the (m,n) mode"""
        if tau is None:
            tau = self.tauOpt()
        if d is None:
            d = self.d_opt()
        npix = self.npix_wfs
        if self.bin_npix:
            npix = npix*(self.d_min/d)**2
        F = self.Fg()*tau
        snr2 = F**2/(F + npix*self.Fbg*tau + npix*self.ron_wfs**2)
        var = self.beta_p(m,n)**2/snr2*(self.lam_wfs/self.lam_sci)**2
        return np.where((np.asarray(m) == 0) & (np.asarray(n) == 0), 0., var)

    def timeDelayErrorMode(self,m,n,tau=None,component=None):
        """ Frozen flow variance accumulated over the integration time and loop delay"""
        if tau is None:
            tau = self.tauOpt()
        shape = (-1,) + (1,)*np.ndim(m)
        vx = (self.atm.wSpeed*np.cos(self.atm.wDir)).reshape(shape)
        vy = (self.atm.wSpeed*np.sin(self.atm.wDir)).reshape(shape)
        fl = (np.asarray(m)*vx + np.asarray(n)*vy)/self.D
        lag = 2*np.pi*fl*(tau + self.deltaTau)
        return np.sum(self.layerVariance(m,n,component=component)*lag**2,axis=0)

    def refractionFactors(self):
        """ (n_sci-1, n_wfs-1) at the observatory altitude"""
        rho = np.exp(-self.atm.h_obs/self.atm.H) if self.atm.H > 0 else 1.0
        return (rho*FourierUtils.refractionIndex(self.lam_sci),
                rho*FourierUtils.refractionIndex(self.lam_wfs))

    def C0var(self,m,n):
        """ Uncorrected phase"""
        return self.modeVariance(m,n)

    def C1var(self,m,n):
        """ Uncorrected amplitude"""
        return self.modeVariance(m,n,component='amplitude')

    def C2var(self,m,n):
        """ Phase residual from measurement noise and time delay"""
        tau = self.tauOpt()
        return self.measurementErrorMode(m,n,tau=tau) + self.timeDelayErrorMode(m,n,tau=tau)

    def C3var(self,m,n):
        """ Amplitude residual from measurement noise and time delay"""
        tau = self.tauOpt()
        return self.measurementErrorMode(m,n,tau=tau) \
            + self.timeDelayErrorMode(m,n,tau=tau,component='amplitude')

    def C4var(self,m,n):
        """ Chromaticity of the scintillation, phase"""
        return self.modeVariance(m,n,component='dispPhase')

    def C5var(self,m,n):
        """ Chromaticity of the scintillation, amplitude"""
        return self.modeVariance(m,n,component='dispAmplitude')

    def C6var(self,m,n):
        """ Chromaticity of the refractive index of air"""
        nsci,nwfs = self.refractionFactors()
        return self.modeVariance(m,n)*((nsci - nwfs)/nwfs)**2

    def C7var(self,m,n):
        """ Dispersive anisoplanatism: the WFS and science beams cross each
        layer at positions shifted along the elevation axis"""
        nsci,nwfs = self.refractionFactors()
        dtheta = abs((nwfs - nsci)*np.tan(self.zeta))
        delta = (self.atm.heights*self.secZeta*dtheta).reshape((-1,) + (1,)*np.ndim(m))
        A = 2*(1 - np.cos(2*np.pi*np.asarray(m)*delta/self.D))
        return np.sum(self.layerVariance(m,n)*A,axis=0)

    def ncpErrorMode(self,m,n):
        """ Non-common-path variance of the (m,n) mode: power law of index ncp_alpha
        normalized so that the sum over the fit support is ncp_wfe"""
        mg,ng = FourierUtils.mode_grid(self.fit_mn_max)
        msk = self.inFit(mg,ng)
        norm = np.sum(np.hypot(mg[msk],ng[msk])**(-self.ncp_alpha))
        r = np.hypot(m,n)
        with np.errstate(divide='ignore'):
            out = self.ncp_wfe*r**(-self.ncp_alpha)/norm
        return np.where(self.inFit(m,n),out,0.)

    def C_(self,k,m,n,normalized=False):
        """ Variance term C<k> of the (m,n) mode, 0 outside the fit support
        and outside the region where the term applies"""
        self.checkConfig()
        shape = np.broadcast(m,n).shape
        m,n = np.broadcast_arrays(np.atleast_1d(m),np.atleast_1d(n))
        msk = self.inFit(m,n)
        region = _REGIONS[k]
        if region != 'all':
            con = self.controlled(m,n)
            msk = msk & (con if region == 'controlled' else ~con)

        # evaluate only inside the mask: (0,0) has an infinite PSD
        out = np.zeros(m.shape)
        if np.any(msk):
            var = getattr(self,'C%dvar'%k)(m[msk],n[msk])
            out[msk] = checkFinite(var,'C%d variance'%k)
        if normalized:
            out = out/self.strehl()
        if shape == ():
            return float(out[0])
        return out.reshape(shape)

    def C0(self,m,n,normalized=False):
        return self.C_(0,m,n,normalized)

    def C1(self,m,n,normalized=False):
        return self.C_(1,m,n,normalized)

    def C2(self,m,n,normalized=False):
        return self.C_(2,m,n,normalized)

    def C3(self,m,n,normalized=False):
        return self.C_(3,m,n,normalized)

    def C4(self,m,n,normalized=False):
        return self.C_(4,m,n,normalized)

    def C5(self,m,n,normalized=False):
        return self.C_(5,m,n,normalized)

    def C6(self,m,n,normalized=False):
        return self.C_(6,m,n,normalized)

    def C7(self,m,n,normalized=False):
        return self.C_(7,m,n,normalized)

    #%% MAPS
    def CMap(self,k,im,normalized=False):
        """ Fill the square array im, of odd size 2 mnMap+1, with C<k> centered on (0,0)"""
        nx,ny = im.shape
        if nx != ny or nx%2 == 0:
            raise ConfigurationError('Variance maps must be square with an odd size, got {}'.format(im.shape))
        m,n = FourierUtils.mode_grid((nx-1)//2)
        im[:,:] = self.C_(k,m,n,normalized)
        return im

    def C0Map(self,im,normalized=False):
        return self.CMap(0,im,normalized)

    def C1Map(self,im,normalized=False):
        return self.CMap(1,im,normalized)

    def C2Map(self,im,normalized=False):
        return self.CMap(2,im,normalized)

    def C3Map(self,im,normalized=False):
        return self.CMap(3,im,normalized)

    def C4Map(self,im,normalized=False):
        return self.CMap(4,im,normalized)

    def C5Map(self,im,normalized=False):
        return self.CMap(5,im,normalized)

    def C6Map(self,im,normalized=False):
        return self.CMap(6,im,normalized)

    def C7Map(self,im,normalized=False):
        return self.CMap(7,im,normalized)

    #%% ERROR BUDGET
    def errorTerms(self,d=None,tau=None):
        """ Every error term of the budget, summed over the fit support, for the
        actuator spacing d and the integration time tau (optimal ones by default)"""
        self.checkConfig()
        if d is None:
            d = self.d_opt()
        if tau is None:
            tau = self._tauOpt(d) if self.optTau else self.tauWFS

        m,n = FourierUtils.mode_grid(self.fit_mn_max)
        fit = self.inFit(m,n)
        con = fit & self.controlled(m,n,d)
        unc = fit & ~con
        mc,nc = m[con],n[con]
        mu,nu = m[unc],n[unc]

        terms = dict()
        terms['measurement']   = math.fsum(self.measurementErrorMode(mc,nc,tau=tau,d=d))
        terms['timeDelay']     = math.fsum(self.timeDelayErrorMode(mc,nc,tau=tau))
        terms['fitting']       = math.fsum(self.C0var(mu,nu))
        terms['chromScintOPD'] = math.fsum(self.C4var(mc,nc))
        terms['chromIndex']    = math.fsum(self.C6var(mc,nc))
        terms['dispAnisoOPD']  = math.fsum(self.C7var(mc,nc))
        terms['ncp']           = math.fsum(self.ncpErrorMode(m[fit],n[fit]))
        for key,val in terms.items():
            checkFinite(val,key + ' error')
        return terms

    def measurementError(self):
        return self.errorTerms()['measurement']

    def timeDelayError(self):
        return self.errorTerms()['timeDelay']

    def fittingError(self):
        return self.errorTerms()['fitting']

    def chromScintOPDError(self):
        return self.errorTerms()['chromScintOPD']

    def chromIndexError(self):
        return self.errorTerms()['chromIndex']

    def dispAnisoOPDError(self):
        return self.errorTerms()['dispAnisoOPD']

    def ncpError(self):
        return self.errorTerms()['ncp']

    def totalVariance(self,terms=None):
        if terms is None:
            terms = self.errorTerms()
        return math.fsum(terms[key] for key in ERROR_TERMS)

    def strehl(self,total=None):
        """ Maréchal approximation of the Strehl ratio of the total variance,
        by default of the current configuration"""
        if total is None:
            total = self.totalVariance()
        strehl = math.exp(-total)
        if not strehl > 0:
            raise NumericalError('A total variance of {:.4g} rad^2 underflows the Strehl ratio'.format(total))
        return strehl

    def errorBudget(self,starMag=None):
        """ Error budget row: optimal spacing, every error term and the Strehl"""
        if starMag is not None:
            self.starMag = starMag
        d = self.d_opt()
        tau = self._tauOpt(d) if self.optTau else self.tauWFS
        terms = self.errorTerms(d=d,tau=tau)
        budget = {'starMag':self.starMag,'d_opt':d,'tauWFS':tau}
        budget.update(terms)
        budget['total'] = self.totalVariance(terms)
        budget['strehl'] = self.strehl(budget['total'])
        return budget

    #%% OPTIMIZATIONS
    def d_opt(self):
        """ Actuator spacing minimizing the total error, scanned upward from d_min
        in steps of d_min/optd_delta while the error does not increase.
        Ties keep the smaller spacing."""
        if not self.optd:
            return self.d_min
        self.checkConfig()
        dBest = self.d_min
        best = self.totalVariance(self.errorTerms(d=dBest))
        i = 1
        while True:
            d = self.d_min*(1 + i/self.optd_delta)
            if d > self.D/2:
                break
            err = self.totalVariance(self.errorTerms(d=d))
            if err < best:
                best = err
                dBest = d
            elif err > best:
                break
            i += 1
        return dBest

    optActuatorSpacing = d_opt

    def _tauOpt(self,d):
        if not self.minTauWFS > 0:
            raise ConfigurationError('minTauWFS must be > 0 to optimize the integration time')
        if not self.maxTauWFS > self.minTauWFS:
            return self.minTauWFS
        m,n = FourierUtils.mode_grid(self.fit_mn_max)
        con = self.inFit(m,n) & self.controlled(m,n,d)
        mc,nc = m[con],n[con]
        if mc.size == 0:
            return self.minTauWFS

        def cost(tau):
            return np.sum(self.measurementErrorMode(mc,nc,tau=tau,d=d)) \
                + np.sum(self.timeDelayErrorMode(mc,nc,tau=tau))

        # the cost is smooth in log(tau)
        res = spo.minimize_scalar(lambda x: cost(np.exp(x)),
                                  bounds=(np.log(self.minTauWFS),np.log(self.maxTauWFS)),
                                  method='bounded',options={'xatol':1e-6})
        if not np.isfinite(res.fun):
            raise NumericalError('The integration time optimization did not converge')
        tau = float(np.exp(res.x))
        # the bounded search never lands exactly on the edges
        for edge in (self.minTauWFS,self.maxTauWFS):
            if cost(edge) <= cost(tau):
                tau = edge
        return tau

    def tauOpt(self):
        """ WFS integration time minimizing measurement + time delay errors"""
        if not self.optTau:
            return self.tauWFS
        self.checkConfig()
        return self._tauOpt(self.d_opt())

    #%% SETUP DUMP
    def setupDict(self):
        setup = {'wfs':self.wfs.wfstype}
        for key in ('D','d_min','optd','optd_delta','F0','lam_wfs','npix_wfs','ron_wfs',
                    'bin_npix','Fbg','tauWFS','minTauWFS','maxTauWFS','deltaTau','optTau',
                    'lam_sci','zeta','fit_mn_max','ncp_wfe','ncp_alpha','starMag','circularLimit'):
            setup[key] = getattr(self,key)
        return {'atmosphere':self.atm.setupDict(),'PSD':self.psd.setupDict(),'system':setup}

    def dumpAOSystem(self):
        """ Text dump of the resolved configuration"""
        s = '# aobudget setup\n'
        s += self.atm.__repr__()
        s += self.psd.__repr__()
        s += self.wfs.__repr__()
        s += self.__repr__()
        return s

    def __repr__(self):
        s = '___ AO SYSTEM ___\n'
        s += '-------------------------------------------------------------------------------------- \n'
        for key,val in self.setupDict()['system'].items():
            s += '. %s \t= %s\n'%(key,val)
        s += '--------------------------------------------------------------------------------------\n'
        return s
