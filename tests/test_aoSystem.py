#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unit tests for the aoSystem variance terms, error budget and optimizations
"""

import math
import unittest
import numpy as np

from aobudget.aoSystem import ConfigurationError, NumericalError
from aobudget.aoSystem.atmosphere import atmosphere
from aobudget.aoSystem.spectrum import vonKarmanSpectrum
from aobudget.aoSystem.aoSystem import aoSystem, ERROR_TERMS
import aobudget.aoSystem.FourierUtils as FourierUtils

def singleLayerSystem(**kwargs):
    """8 m telescope, one ground layer with r0 = 15 cm at 500 nm and 10 m/s of wind"""
    atm = atmosphere(0.5e-6, 0.15, [1.0], [0.0], wSpeed=10.0, wDir=0.0)
    params = dict(D=8.0, d_min=0.2, fit_mn_max=10, wfs='idealWFS')
    params.update(kwargs)
    return aoSystem(atm=atm, **params)

def twoLayerSystem(**kwargs):
    atm = atmosphere(0.5e-6, 0.15, [0.6, 0.4], [0.0, 10000.0], wSpeed=[10.0, 25.0],
                     wDir=[0.0, np.pi/3], L0=25.0, h_obs=2400.)
    params = dict(D=6.5, d_min=6.5/24, fit_mn_max=12, lam_sci=0.8e-6, lam_wfs=0.6e-6)
    params.update(kwargs)
    return aoSystem(atm=atm, **params)

class TestSpectrum(unittest.TestCase):

    def setUp(self):
        self.atm = atmosphere(0.5e-6, 0.15, [0.5, 0.5], [0.0, 8000.0])
        self.k = np.array([0.01, 0.1, 10.])

    def test_layer_sum(self):
        psd = vonKarmanSpectrum()
        np.testing.assert_allclose(psd(self.atm, self.k, 0.5e-6), self.atm.spectrum(self.k), rtol=1e-12)
        self.assertEqual(psd.layerSpectrum(self.atm, self.k, 0.5e-6).shape, (2, 3))
        self.assertEqual(psd.layerSpectrum(self.atm, self.k, 0.5e-6, layers=1).shape, (1, 3))

    def test_tip_tilt_removal(self):
        psd = vonKarmanSpectrum(subTipTilt=True, D=8.0)
        ratio = psd(self.atm, self.k, 0.5e-6)/self.atm.spectrum(self.k)
        self.assertLess(ratio[0], 1e-2)
        self.assertAlmostEqual(ratio[2], 1., places=3)
        self.assertEqual(FourierUtils.tiltFilter(8.0, 0.), 0.)

    def test_scintillation_split(self):
        psd = vonKarmanSpectrum(scintillation=True)
        phase = psd(self.atm, self.k, 0.5e-6)
        amplitude = psd(self.atm, self.k, 0.5e-6, component='amplitude')
        np.testing.assert_allclose(phase + amplitude, self.atm.spectrum(self.k), rtol=1e-12)

    def test_unknown_component(self):
        with self.assertRaises(ConfigurationError):
            vonKarmanSpectrum(component='intensity')

class TestVarianceTerms(unittest.TestCase):

    def setUp(self):
        # controlled region half-width D/d_min/2 = 4 inside the fit support
        self.aosys = singleLayerSystem(d_min=1.0)

    def test_origin_and_cutoff(self):
        F = self.aosys.fit_mn_max
        for k in range(8):
            self.assertEqual(self.aosys.C_(k, 0, 0), 0.)
            self.assertEqual(self.aosys.C_(k, F+1, 0), 0.)
            self.assertEqual(self.aosys.C_(k, 0, -F-3, normalized=True), 0.)

    def test_regions(self):
        self.assertEqual(self.aosys.C0(3, 0), 0.)
        self.assertGreater(self.aosys.C0(7, 0), 0.)
        self.assertGreater(self.aosys.C2(3, 0), 0.)
        self.assertEqual(self.aosys.C2(7, 0), 0.)

    def test_circular_support(self):
        aosys = singleLayerSystem(d_min=4.0)
        self.assertGreater(aosys.C0(8, 8), 0.)
        aosys.circularLimit = True
        self.assertEqual(aosys.C0(8, 8), 0.)
        self.assertGreater(aosys.C0(6, 8), 0.)

    def test_uncorrected_phase(self):
        k = 7/8.0
        expected = self.aosys.atm.spectrum(k, self.aosys.lam_sci)/8.0**2
        self.assertAlmostEqual(self.aosys.C0(7, 0)/expected, 1., places=12)

    def test_amplitude_needs_scintillation(self):
        self.assertEqual(self.aosys.C1(2, 1), 0.)
        aosys = twoLayerSystem(psd=vonKarmanSpectrum(scintillation=True))
        self.assertGreater(aosys.C1(2, 1), 0.)
        self.assertGreater(aosys.C4(2, 1), 0.)
        self.assertGreater(aosys.C5(2, 1), 0.)

    def test_chromatic_terms(self):
        aosys = twoLayerSystem()
        self.assertGreater(aosys.C6(2, 0), 0.)
        self.assertEqual(aosys.C7(2, 0), 0.)
        aosys.zeta = 0.6
        self.assertGreater(aosys.C7(2, 0), 0.)
        # the shift is along m only
        self.assertEqual(aosys.C7(0, 2), 0.)

    def test_normalized(self):
        strehl = self.aosys.strehl()
        self.assertAlmostEqual(self.aosys.C2(1, 0, normalized=True), self.aosys.C2(1, 0)/strehl, places=14)

    def test_array_input(self):
        m, n = FourierUtils.mode_grid(3)
        out = self.aosys.C2(m, n)
        self.assertEqual(out.shape, m.shape)
        self.assertEqual(out[3, 3], 0.)
        self.assertAlmostEqual(out[4, 3]/self.aosys.C2(1, 0), 1., places=12)

    def test_map(self):
        im1 = self.aosys.C0Map(np.zeros((31, 31)))
        im2 = self.aosys.C0Map(np.zeros((31, 31)))
        self.assertTrue(np.array_equal(im1, im2))
        self.assertEqual(im1[15, 15], 0.)
        self.assertAlmostEqual(im1[15+7, 15-2]/self.aosys.C0(7, -2), 1., places=12)
        # beyond the fit support
        self.assertEqual(im1[0, 15], 0.)

    def test_map_shape(self):
        with self.assertRaises(ConfigurationError):
            self.aosys.C2Map(np.zeros((30, 30)))

    def test_invalid_config(self):
        self.aosys.fit_mn_max = 0
        with self.assertRaises(ConfigurationError):
            self.aosys.strehl()
        with self.assertRaises(ConfigurationError):
            self.aosys.C0(1, 0)
        aosys = singleLayerSystem(lam_sci=0.)
        with self.assertRaises(ConfigurationError):
            aosys.fittingError()

class TestErrorBudget(unittest.TestCase):

    def setUp(self):
        self.aosys = singleLayerSystem()

    def test_strehl_single_layer(self):
        strehl = self.aosys.strehl()
        self.assertTrue(np.isfinite(strehl))
        self.assertGreater(strehl, 0.)
        self.assertLess(strehl, 1.)

    def test_strehl_is_marechal(self):
        aosys = twoLayerSystem(ncp_wfe=0.01, zeta=0.5)
        total = (aosys.measurementError() + aosys.timeDelayError() + aosys.fittingError()
                 + aosys.chromScintOPDError() + aosys.chromIndexError() + aosys.dispAnisoOPDError()
                 + aosys.ncpError())
        self.assertAlmostEqual(aosys.totalVariance(), total, places=12)
        self.assertAlmostEqual(aosys.strehl(), math.exp(-total), places=12)

    def test_fitting_is_sum_of_C0(self):
        aosys = singleLayerSystem(d_min=1.0)
        m, n = FourierUtils.mode_grid(aosys.fit_mn_max)
        self.assertAlmostEqual(aosys.fittingError()/np.sum(aosys.C0(m, n)), 1., places=12)

    def test_all_controlled(self):
        # D/d_min/2 = 20 covers the whole fit support
        self.assertEqual(self.aosys.fittingError(), 0.)

    def test_measurement_increases_with_magnitude(self):
        errs = []
        for mag in [0., 5., 10.]:
            self.aosys.starMag = mag
            errs.append(self.aosys.measurementError())
        self.assertTrue(errs[0] < errs[1] < errs[2])

    def test_strehl_underflow(self):
        aosys = singleLayerSystem(ncp_wfe=1000.)
        self.assertGreater(aosys.totalVariance(), 1000.)
        with self.assertRaises(NumericalError):
            aosys.strehl()
        with self.assertRaises(NumericalError):
            aosys.errorBudget()
        self.assertAlmostEqual(aosys.strehl(0.5), math.exp(-0.5), places=15)

    def test_terms_non_negative(self):
        budget = twoLayerSystem(ncp_wfe=0.02).errorBudget(8.)
        for key in ERROR_TERMS:
            self.assertGreaterEqual(budget[key], 0.)
        self.assertAlmostEqual(budget['ncp'], 0.02, places=12)
        self.assertEqual(budget['starMag'], 8.)

    def test_flux(self):
        self.assertAlmostEqual(self.aosys.Fg(0.), self.aosys.F0)
        self.assertAlmostEqual(self.aosys.Fg(5.)/self.aosys.F0, 0.01)
        with self.assertRaises(NumericalError):
            self.aosys.Fg(-1000.)
        with self.assertRaises(NumericalError):
            self.aosys.Fg(1000.)

    def test_wfs_scaling(self):
        ideal = self.aosys.measurementError()
        self.aosys.wfs = 'unmodPyWFS'
        self.assertAlmostEqual(self.aosys.measurementError()/ideal, 2., places=12)

class TestOptimizations(unittest.TestCase):

    def test_d_opt_disabled(self):
        aosys = singleLayerSystem(starMag=15.)
        self.assertEqual(aosys.d_opt(), aosys.d_min)

    def test_d_opt(self):
        aosys = singleLayerSystem(starMag=14., optd=True, bin_npix=True)
        d = aosys.d_opt()
        self.assertGreaterEqual(d, aosys.d_min)
        self.assertLessEqual(d, aosys.D/2)
        best = aosys.totalVariance(aosys.errorTerms(d=d))
        self.assertLessEqual(best, aosys.totalVariance(aosys.errorTerms(d=aosys.d_min)))
        # the scan steps are d_min (1 + i/optd_delta)
        i = d/aosys.d_min - 1
        self.assertAlmostEqual(i, round(i), places=9)

    def test_tau_opt(self):
        aosys = singleLayerSystem(starMag=12., optTau=True, minTauWFS=1e-4, maxTauWFS=0.05)
        tau = aosys.tauOpt()
        self.assertGreaterEqual(tau, aosys.minTauWFS)
        self.assertLessEqual(tau, aosys.maxTauWFS)

        def cost(t):
            terms = aosys.errorTerms(tau=t)
            return terms['measurement'] + terms['timeDelay']
        for t in [1e-4, 1e-3, 1e-2, 0.05]:
            self.assertLessEqual(cost(tau), cost(t)*(1 + 1e-9))

    def test_tau_opt_disabled(self):
        aosys = singleLayerSystem()
        self.assertEqual(aosys.tauOpt(), aosys.tauWFS)

class TestModels(unittest.TestCase):

    def test_magaox(self):
        aosys = aoSystem().loadMagAOX()
        self.assertEqual(aosys.D, 6.5)
        self.assertEqual(aosys.atm.nL, 7)
        self.assertAlmostEqual(aosys.atm.r0, 0.17, places=12)
        self.assertAlmostEqual(aosys.d_min, 6.5/48)

    def test_guyon2005(self):
        aosys = aoSystem().loadGuyon2005()
        self.assertEqual(aosys.D, 8.0)
        self.assertTrue(math.isinf(aosys.atm.L0))
        self.assertAlmostEqual(aosys.atm.r0, 0.2, places=12)

    def test_gmagaox(self):
        aosys = aoSystem().loadGMagAOX()
        self.assertEqual(aosys.D, 25.4)
        self.assertEqual(aosys.psd.D, 25.4)

    def test_unknown_model(self):
        with self.assertRaises(ConfigurationError):
            aoSystem().loadModel('Keck')

    def test_dump(self):
        s = aoSystem().loadMagAOX().dumpAOSystem()
        self.assertIn('AO SYSTEM', s)
        self.assertIn('ATMOSPHERE', s)
        self.assertIn('fit_mn_max', s)

if __name__ == '__main__':
    unittest.main()
