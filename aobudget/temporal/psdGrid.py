#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Grid of open-loop temporal PSDs over the Fourier modes: generation on disk,
closed-loop analysis per star magnitude, and speckle lifetimes.

Grid directory layout:
    gridDir/freq.fits             frequencies, header FS, DFREQ, FMAX and SETUP,
                                  the digest of the atmosphere and PSD setup
    gridDir/params.txt            setup of the aoSystem that made the grid
    gridDir/psd_<m>_<n>.fits      one open-loop PSD per mode
    gridDir/subDir/mag_<mag>/     analysis results of one star magnitude
"""

# IMPORTING PYTHON LIBRAIRIES
import os
import json
import hashlib
import copy
import math
import numpy as np
from astropy.io import fits
from astropy.table import Table
from joblib import Parallel, delayed
import tqdm

# IMPORTING AOBUDGET MODULES
from aobudget.aoSystem import ConfigurationError, fftEnvironment, trapz
import aobudget.aoSystem.FourierUtils as FourierUtils
from aobudget.temporal.fourierTemporalPSD import fourierTemporalPSD, frequencyGrid
from aobudget.temporal.linearPredictor import linearPredictor

#%% FILE HELPERS
def psdFileName(m,n):
    return 'psd_%d_%d.fits'%(m,n)

def magDirName(mag):
    return 'mag_%g'%mag

def gridSetup(aosys):
    """ Parameters the open-loop PSDs of a grid depend on, besides the sampling"""
    setup  = aosys.setupDict()
    system = {key:setup['system'][key] for key in ('D','lam_sci','lam_wfs','zeta')}
    return {'atmosphere':setup['atmosphere'],'PSD':setup['PSD'],'system':system}

def setupDigest(aosys):
    text = json.dumps(gridSetup(aosys),sort_keys=True,default=float)
    return hashlib.sha1(text.encode('utf-8')).hexdigest()

def writeAtomic(path,writer):
    """ Write through a temporary file renamed onto path, so that an
    interrupted run never leaves a partial record"""
    tmp = '%s.%d.tmp'%(path,os.getpid())
    try:
        writer(tmp)
        os.replace(tmp,path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)

def writeFits(path,data,header=None):
    hdu = fits.PrimaryHDU(np.asarray(data),header=header)
    writeAtomic(path,lambda tmp: hdu.writeto(tmp,overwrite=True,output_verify='silentfix'))

def writeText(path,text):
    def writer(tmp):
        with open(tmp,'w') as f:
            f.write(text)
    writeAtomic(path,writer)

#%% SPECKLE LIFETIMES
def speckleLifetime(psd,dfreq,rng,fftenv=None):
    """
    Decorrelation time of the speckle intensity of a mode with the one-sided
    temporal PSD psd sampled at dfreq, dfreq*2, ...
    Two independent random-phase series give the real and imaginary parts of
    the speckle field; the lifetime is the integral of the normalized
    autocorrelation of the intensity up to its first zero crossing.
    """
    if fftenv is None:
        fftenv = fftEnvironment(1)
    nf   = len(psd)
    nPts = 2*nf
    dt   = 1/(nPts*dfreq)
    amp  = np.zeros(nf+1)
    amp[1:] = np.sqrt(np.maximum(psd,0))

    x = []
    for _ in range(2):
        phase = np.exp(2*complex(0,1)*np.pi*rng.random(nf+1))
        x.append(fftenv.irfft(amp*phase,n=nPts))
    I = x[0]**2 + x[1]**2
    I = I - np.mean(I)

    c = FourierUtils.fftCorrel(I,I,fftenv=fftenv).real
    if not c[0] > 0:
        return 0.0
    c = c[:nPts//2]/c[0]
    neg = np.where(c <= 0)[0]
    i0  = neg[0] if neg.size else len(c)
    if i0 < 2:
        return 0.0
    return float(trapz(c[:i0],dx=dt))

def lifetimeStats(psd,dfreq,nTrials,seed,m,n,offset,fftenv=None):
    """ Mean and standard deviation of the speckle lifetime over nTrials,
    each trial seeded from (seed, m, n, trial)"""
    taus = np.zeros(nTrials)
    for t in range(nTrials):
        rng = np.random.default_rng([seed,m+offset,n+offset,t])
        taus[t] = speckleLifetime(psd,dfreq,rng,fftenv=fftenv)
    return float(np.mean(taus)),float(np.std(taus))

#%% WORKERS
def _makeModePSD(engine,freq,m,n,fmax,path):
    p = 1 if FourierUtils.half_plane(m,n) else -1
    psd = engine.multiLayerPSD(freq,m,n,p,fmax)
    hdr = fits.Header()
    hdr['M'] = m
    hdr['N'] = n
    hdr['P'] = p
    writeFits(path,psd,header=hdr)
    return m,n

def analyzeMode(engine,freq,dfreq,m,n,psdOL,starMag,controlled,lpNc,
                lifetimeTrials=0,uncontrolledLifetimes=False,seed=0,offset=0,keepPSDs=False):
    """
    Closed-loop analysis of the (m,n) mode. Controlled modes get the optimal
    integrator and, when lpNc > 1, the optimal linear predictor; uncontrolled
    modes keep their open-loop variance.
    Returns a dict record of the mode.
    """
    df    = freq[1] - freq[0] if freq.size > 1 else freq[0]
    varOL = float(np.sum(psdOL)*df)
    rec = {'m':int(m),'n':int(n),'controlled':bool(controlled),'var_OL':varOL,
           'gopt_SI':0.0,'gmax_SI':0.0,'var_SI':varOL,
           'gopt_LP':-1.0,'gmax_LP':-1.0,'var_LP':-1.0,
           'tau_SI':0.0,'tau_SI_std':0.0,'tau_LP':0.0,'tau_LP_std':0.0}
    psdSI = psdOL
    psdLP = None
    psdN  = None

    if controlled:
        psdN = engine.noisePSD(freq,m,n,starMag=starMag)
        go   = engine.controller(freq)
        gopt,var,gmax = go.optGainOpenLoop(psdOL,psdN)
        etf,ntf = go.clTF2(gopt)
        psdSI = etf*psdOL + ntf*psdN
        rec.update({'gopt_SI':gopt,'gmax_SI':gmax,'var_SI':var})
        if lpNc > 1:
            gmaxLP,goptLP,varLP,b,_ = linearPredictor(lpNc).regularizeCoefficients(go,psdOL,psdN)
            etf,ntf = go.clTF2(goptLP,b=b)
            psdLP = etf*psdOL + ntf*psdN
            rec.update({'gopt_LP':goptLP,'gmax_LP':gmaxLP,'var_LP':varLP})
    elif lpNc > 1:
        rec['var_LP'] = varOL

    if lifetimeTrials > 0 and (controlled or uncontrolledLifetimes):
        fftenv = engine.fftenv
        rec['tau_SI'],rec['tau_SI_std'] = lifetimeStats(psdSI,dfreq,lifetimeTrials,seed,m,n,offset,fftenv)
        if psdLP is not None:
            rec['tau_LP'],rec['tau_LP_std'] = lifetimeStats(psdLP,dfreq,lifetimeTrials,seed,m,n,offset,fftenv)

    if keepPSDs:
        rec['psds'] = {'OL':psdOL,'N':psdN,'SI':psdSI,'LP':psdLP}
    return rec

#%% RESULT
class gridResult:
    """ Per-mode records and totals of the analysis at one star magnitude"""

    def __init__(self,mag,records,lpNc=0):
        self.mag     = mag
        self.lpNc    = lpNc
        self.records = {(rec['m'],rec['n']):rec for rec in records}
        self.totals  = self.aggregate()

    def aggregate(self):
        # sorted mode order and fsum: totals do not depend on completion order
        modes = sorted(self.records)
        recs  = [self.records[mn] for mn in modes]
        tot = {'mag':self.mag,
               'nModes':len(recs),
               'nControlled':sum(rec['controlled'] for rec in recs),
               'var_OL':math.fsum(rec['var_OL'] for rec in recs),
               'var_SI':math.fsum(rec['var_SI'] for rec in recs)}
        tot['strehl_SI'] = math.exp(-tot['var_SI'])
        if self.lpNc > 1:
            tot['var_LP'] = math.fsum(rec['var_LP'] for rec in recs)
            tot['strehl_LP'] = math.exp(-tot['var_LP'])
        else:
            tot['var_LP'] = -1.0
            tot['strehl_LP'] = -1.0
        return tot

    def map(self,key,mnMax):
        out = np.zeros((2*mnMax+1,2*mnMax+1))
        for (m,n),rec in self.records.items():
            out[m+mnMax,n+mnMax] = rec[key]
        return out

    def budgetTable(self):
        tab = Table(rows=[[self.totals[key] for key in
                           ('mag','nModes','nControlled','var_OL','var_SI','var_LP','strehl_SI','strehl_LP')]],
                    names=('mag','nModes','nControlled','var_OL','var_SI','var_LP','strehl_SI','strehl_LP'))
        return tab

    def __repr__(self):
        s = '___ GRID ANALYSIS mag = %g ___\n'%self.mag
        for key,val in self.totals.items():
            s += '. %s \t= %s\n'%(key,val)
        return s

#%% PIPELINE
class psdGrid:
    """
    Grid pipeline over the Fourier modes of an aoSystem.
    Every precondition is checked before any file is written.
        - nJobs: number of joblib workers, each with its own aoSystem copy
        - seed: seed of the lifetime trials, drawn at random when None
    """

    def __init__(self,aosys,nJobs=1,seed=None,fftenv=None,verbose=False):
        self.aosys   = aosys
        self.nJobs   = nJobs
        if seed is None:
            seed = int(np.random.SeedSequence().entropy % 2**32)
        self.seed    = seed
        self.fftenv  = fftenv
        self.verbose = verbose

    def _engine(self,starMag=None):
        aosys = copy.deepcopy(self.aosys)
        if starMag is not None:
            aosys.starMag = starMag
        return fourierTemporalPSD(aosys,fftenv=self.fftenv)

    def _parallel(self,tasks):
        return Parallel(n_jobs=self.nJobs,backend='threading')(tasks)

    def modes(self,fit_mn_max):
        return FourierUtils.mode_list(fit_mn_max,circular=self.aosys.circularLimit)

    #%% GENERATION
    def makePSDGrid(self,gridDir,fit_mn_max,dfreq,fs,fmax=0):
        """ Write the open-loop PSD of every mode of the support into gridDir.
        Records already present are kept, so an interrupted run resumes.
        A gridDir made with another sampling or another atmosphere, PSD or
        telescope setup is refused before anything is written."""
        if not gridDir:
            raise ConfigurationError('temporalPSDGrid: gridDir must be set')
        if not fit_mn_max > 0:
            raise ConfigurationError('temporalPSDGrid: fit_mn_max must be > 0')
        if not dfreq > 0:
            raise ConfigurationError('temporalPSDGrid: dfreq must be > 0 to set the frequency sampling')
        if not fs > 0:
            raise ConfigurationError('temporalPSDGrid: minTauWFS must be > 0 to set the loop frequency')
        freq   = frequencyGrid(fs,dfreq)
        digest = setupDigest(self.aosys)

        path_freq = os.path.join(gridDir,'freq.fits')
        if os.path.isfile(path_freq):
            hdr = fits.getheader(path_freq)
            if not (np.isclose(hdr['FS'],fs) and np.isclose(hdr['DFREQ'],dfreq) and np.isclose(hdr['FMAX'],fmax)):
                raise ConfigurationError('{} holds a grid with another sampling'.format(gridDir))
            if hdr.get('SETUP') != digest:
                raise ConfigurationError('{} holds a grid made with another setup, see its params.txt'.format(gridDir))
        else:
            os.makedirs(gridDir,exist_ok=True)
            hdr = fits.Header()
            hdr['FS']    = fs
            hdr['DFREQ'] = dfreq
            hdr['FMAX']  = fmax
            hdr['SETUP'] = digest
            writeFits(path_freq,freq,header=hdr)
        writeText(os.path.join(gridDir,'params.txt'),self.aosys.dumpAOSystem())

        todo = [(m,n) for m,n in self.modes(fit_mn_max)
                if not os.path.isfile(os.path.join(gridDir,psdFileName(m,n)))]
        if self.verbose:
            print('temporalPSDGrid: %d modes to compute in %s'%(len(todo),gridDir))
        done = self._parallel(delayed(_makeModePSD)(self._engine(),freq,m,n,fmax,
                                                    os.path.join(gridDir,psdFileName(m,n)))
                              for m,n in tqdm.tqdm(todo,disable=not self.verbose))
        return done

    def readFreq(self,gridDir):
        with fits.open(os.path.join(gridDir,'freq.fits')) as hdul:
            freq = np.array(hdul[0].data,dtype=float)
            hdr  = hdul[0].header
            return freq,hdr['FS'],hdr['DFREQ'],hdr['FMAX']

    def readModePSD(self,gridDir,m,n):
        with fits.open(os.path.join(gridDir,psdFileName(m,n))) as hdul:
            return np.array(hdul[0].data,dtype=float)

    #%% ANALYSIS
    def analyzeModes(self,modes,psdOf,freq,dfreq,mnCon,lpNc,starMag,
                     lifetimeTrials=0,uncontrolledLifetimes=False,keepPSDs=False,offset=0):
        """ Records of the given modes, psdOf(m,n) giving their open-loop PSD"""
        circular = self.aosys.circularLimit
        tasks = (delayed(analyzeMode)(self._engine(starMag),freq,dfreq,m,n,psdOf(m,n),starMag,
                                      bool(FourierUtils.in_support(m,n,mnCon,circular=circular)),
                                      lpNc,lifetimeTrials,uncontrolledLifetimes,self.seed,offset,keepPSDs)
                 for m,n in tqdm.tqdm(modes,disable=not self.verbose))
        return self._parallel(tasks)

    def checkGrid(self,gridDir,fit_mn_max):
        missing = [(m,n) for m,n in self.modes(fit_mn_max)
                   if not os.path.isfile(os.path.join(gridDir,psdFileName(m,n)))]
        if missing:
            raise ConfigurationError('The PSD grid in {} is incomplete: {} modes missing, e.g. {}'
                                     .format(gridDir,len(missing),missing[0]))

    def analyzePSDGrid(self,subDir,gridDir,fit_mn_max,mnCon,lpNc,mags,lifetimeTrials=0,
                       uncontrolledLifetimes=False,writePSDs=False):
        """
        Closed-loop analysis of the PSD grid for each star magnitude of mags.
        Writes gain, variance and lifetime maps and errorBudget.txt into
        gridDir/subDir/mag_<mag>/ and returns one gridResult per magnitude.
        """
        if not gridDir:
            raise ConfigurationError('temporalPSDGridAnalyze: gridDir must be set')
        if not subDir:
            raise ConfigurationError('temporalPSDGridAnalyze: subDir must be set')
        if not fit_mn_max > 0:
            raise ConfigurationError('temporalPSDGridAnalyze: fit_mn_max must be > 0')
        if not os.path.isdir(gridDir) or not os.path.isfile(os.path.join(gridDir,'freq.fits')):
            raise ConfigurationError('temporalPSDGridAnalyze: {} does not hold a PSD grid'.format(gridDir))
        if not self.aosys.minTauWFS > 0:
            raise ConfigurationError('temporalPSDGridAnalyze: minTauWFS must be > 0 to set the loop frequency')
        if len(mags) == 0:
            raise ConfigurationError('temporalPSDGridAnalyze: no star magnitude to analyze')
        self.checkGrid(gridDir,fit_mn_max)
        for mag in mags:
            self.aosys.Fg(mag)

        freq,fs,dfreq,fmax = self.readFreq(gridDir)
        if not np.isclose(fs,1/self.aosys.minTauWFS):
            print('WARNING: the grid was computed at %.2f Hz but minTauWFS gives %.2f Hz'
                  %(fs,1/self.aosys.minTauWFS))
        modes = self.modes(fit_mn_max)
        psds  = {(m,n):self.readModePSD(gridDir,m,n) for m,n in modes}

        results = []
        for mag in mags:
            outDir = os.path.join(gridDir,subDir,magDirName(mag))
            os.makedirs(outDir,exist_ok=True)
            records = self.analyzeModes(modes,lambda m,n: psds[(m,n)],freq,dfreq,mnCon,lpNc,mag,
                                        lifetimeTrials,uncontrolledLifetimes,keepPSDs=writePSDs,
                                        offset=fit_mn_max)
            res = gridResult(mag,records,lpNc=lpNc)
            self.writeResult(outDir,res,fit_mn_max,lifetimeTrials,writePSDs)
            if self.verbose:
                print(res)
            results.append(res)
        return results

    def writeResult(self,outDir,res,fit_mn_max,lifetimeTrials=0,writePSDs=False):
        keys = ['var_OL','gopt_SI','gmax_SI','var_SI']
        if res.lpNc > 1:
            keys += ['gopt_LP','gmax_LP','var_LP']
        if lifetimeTrials > 0:
            keys += ['tau_SI','tau_SI_std']
            if res.lpNc > 1:
                keys += ['tau_LP','tau_LP_std']
        for key in keys:
            hdr = fits.Header()
            hdr['MAG']   = res.mag
            hdr['MNMAX'] = fit_mn_max
            writeFits(os.path.join(outDir,'%s.fits'%key),res.map(key,fit_mn_max),header=hdr)

        def writer(tmp):
            res.budgetTable().write(tmp,format='ascii.commented_header',overwrite=True)
        writeAtomic(os.path.join(outDir,'errorBudget.txt'),writer)

        if writePSDs:
            psdDir = os.path.join(outDir,'psds')
            os.makedirs(psdDir,exist_ok=True)
            for (m,n),rec in sorted(res.records.items()):
                if not rec['controlled']:
                    continue
                rows = [rec['psds']['OL'],rec['psds']['N'],rec['psds']['SI']]
                if rec['psds']['LP'] is not None:
                    rows.append(rec['psds']['LP'])
                writeFits(os.path.join(psdDir,psdFileName(m,n)),np.array(rows))

    #%% DIRECT
    def directBudget(self,fit_mn_max,mnCon,dfreq,fs,fmax,lpNc,starMag):
        """ Same analysis as analyzePSDGrid for one magnitude, without the PSD files"""
        freq   = frequencyGrid(fs,dfreq)
        engine = self._engine()

        def psdOf(m,n):
            return engine.multiLayerPSD(freq,m,n,1 if FourierUtils.half_plane(m,n) else -1,fmax)

        records = self.analyzeModes(self.modes(fit_mn_max),psdOf,freq,dfreq,mnCon,lpNc,starMag)
        return gridResult(starMag,records,lpNc=lpNc)
