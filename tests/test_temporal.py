#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unit tests for the temporal PSDs, the controller and the linear predictor
"""

import unittest
import numpy as np

from aobudget.aoSystem import ConfigurationError
from aobudget.aoSystem.atmosphere import atmosphere
from aobudget.aoSystem.aoSystem import aoSystem
from aobudget.temporal.rtc import clGainOpt
from aobudget.temporal.linearPredictor import linearPredictor
from aobudget.temporal.fourierTemporalPSD import fourierTemporalPSD, frequencyGrid, wfsNoisePSD

def temporalSystem(wSpeed=10.0, wDir=0.0, **kwargs):
    atm = atmosphere(0.5e-6, 0.15, [1.0], [0.0], wSpeed=wSpeed, wDir=wDir)
    params = dict(D=8.0, d_min=1.0, fit_mn_max=2, minTauWFS=1/200., tauWFS=1/200.)
    params.update(kwargs)
    return aoSystem(atm=atm, **params)

class TestFrequencyGrid(unittest.TestCase):

    def test_grid(self):
        freq = frequencyGrid(200., 1.)
        self.assertEqual(len(freq), 100)
        self.assertEqual(freq[0], 1.)
        self.assertEqual(freq[-1], 100.)
        np.testing.assert_allclose(frequencyGrid(10., 3.), [3.])

    def test_invalid(self):
        with self.assertRaises(ConfigurationError):
            frequencyGrid(200., 0.)
        with self.assertRaises(ConfigurationError):
            frequencyGrid(0., 1.)
        with self.assertRaises(ConfigurationError):
            frequencyGrid(10., 6.)

class TestController(unittest.TestCase):

    def setUp(self):
        self.freq = frequencyGrid(1000., 1.)
        self.go = clGainOpt(1/1000., freq=self.freq)

    def test_max_gain(self):
        # pure 1.5 frame delay: phase crossover at fs/4 where |L1| = 1/sqrt(2)
        self.assertAlmostEqual(self.go.maxStableGain(), np.sqrt(2), places=6)

    def test_transfer_functions(self):
        etf, ntf = self.go.clTF(0.5)
        np.testing.assert_allclose(etf + ntf, np.ones(self.freq.shape), atol=1e-12)
        etf2, ntf2 = self.go.clTF2(0.5)
        # integral action: the error is rejected at low frequency
        self.assertLess(etf2[0], 1e-3)
        self.assertAlmostEqual(ntf2[0], 1., places=3)

    def test_optimal_gain(self):
        psdOL = 1e-2*self.freq**(-8/3)
        psdN = 1e-6*np.ones(self.freq.shape)
        gopt, var, gmax = self.go.optGainOpenLoop(psdOL, psdN)
        self.assertGreater(gopt, 0.)
        self.assertLess(gopt, gmax)
        self.assertAlmostEqual(var, self.go.clVariance(gopt, psdOL, psdN), places=14)
        for g in gmax*np.array([0.05, 0.2, 0.5, 0.8, 0.95]):
            self.assertLessEqual(var, self.go.clVariance(g, psdOL, psdN))

    def test_noise_limited(self):
        # more noise calls for a lower gain
        psdOL = 1e-2*self.freq**(-8/3)
        g1, _, _ = self.go.optGainOpenLoop(psdOL, 1e-8*np.ones(self.freq.shape))
        g2, _, _ = self.go.optGainOpenLoop(psdOL, 1e-3*np.ones(self.freq.shape))
        self.assertLess(g2, g1)

    def test_invalid(self):
        with self.assertRaises(ConfigurationError):
            clGainOpt(0.)
        with self.assertRaises(ConfigurationError):
            self.go.optGainOpenLoop(np.ones(3), np.ones(3))

class TestLinearPredictor(unittest.TestCase):

    def test_order(self):
        with self.assertRaises(ConfigurationError):
            linearPredictor(1)
        with self.assertRaises(ConfigurationError):
            linearPredictor(0)

    def test_coefficients(self):
        freq = frequencyGrid(1000., 1.)
        psd = 1e-2*freq**(-8/3) + 1e-6
        b = linearPredictor(4).calcCoefficients(psd, freq, 1/1000.)
        self.assertEqual(len(b), 4)
        self.assertAlmostEqual(np.sum(b), 1., places=12)

    def test_regularization(self):
        freq = frequencyGrid(1000., 1.)
        psdOL = 1e-2*freq**(-8/3)
        psdN = 1e-6*np.ones(freq.shape)
        go = clGainOpt(1/1000., freq=freq)
        lp = linearPredictor(3, regGrid=[0.1, 1., 10.])
        gmax, gopt, var, b, r = lp.regularizeCoefficients(go, psdOL, psdN)
        self.assertIn(r, [0.1, 1., 10.])
        self.assertGreater(gmax, 0.)
        self.assertTrue(0. < gopt < gmax)
        self.assertAlmostEqual(var, go.clVariance(gopt, psdOL, psdN, b=b), places=14)

class TestTemporalPSD(unittest.TestCase):

    def test_noise_psd(self):
        fs = 200.
        freq = frequencyGrid(fs, 1.)
        psd = wfsNoisePSD(len(freq), 1.0, 1e6, 1/fs, 100, 1.0, 0.5)
        F = 1e6/fs
        var = (F + 100*(1/fs + 0.25))/F**2
        self.assertAlmostEqual(np.sum(psd)*1./var, 1., places=12)
        engine = fourierTemporalPSD(temporalSystem())
        psdN = engine.noisePSD(freq, 1, 0)
        self.assertTrue(np.all(psdN == psdN[0]))

    def test_zero_wind(self):
        engine = fourierTemporalPSD(temporalSystem(wSpeed=0.))
        freq = frequencyGrid(200., 1.)
        psd = engine.multiLayerPSD(freq, 1, 0)
        self.assertTrue(np.all(psd == 0))

    def test_speed_scaling(self):
        """ Frozen flow: doubling the wind speed maps f to 2f and halves the PSD"""
        freq = np.arange(1., 41.)
        psd1 = fourierTemporalPSD(temporalSystem(wSpeed=5.)).multiLayerPSD(freq, 2, 1, 1, 1e9)
        psd2 = fourierTemporalPSD(temporalSystem(wSpeed=10.)).multiLayerPSD(2*freq, 2, 1, 1, 1e9)
        self.assertTrue(np.all(psd1 > 0))
        np.testing.assert_allclose(psd2, 0.5*psd1, rtol=1e-10)

    def test_wind_direction(self):
        """ A mode orthogonal to the wind has its power at low frequencies"""
        freq = frequencyGrid(200., 1.)
        engine = fourierTemporalPSD(temporalSystem(wSpeed=10., wDir=0.))
        along = engine.multiLayerPSD(freq, 2, 0, 1, 1e9)
        across = engine.multiLayerPSD(freq, 0, 2, 1, 1e9)
        peak = freq[np.argmax(along)]
        self.assertGreater(peak, 1.5)
        self.assertLess(peak, 4.)
        self.assertEqual(freq[np.argmax(across)], 1.)

    def test_variance_matches_spatial(self):
        """ The open-loop PSD integrates to the uncorrected variance of the mode"""
        aosys = temporalSystem(wSpeed=10., wDir=0.3, d_min=4., fit_mn_max=4)
        engine = fourierTemporalPSD(aosys)
        df = 0.25
        freq = df*np.arange(1, 201)
        for m, n in [(3, 0), (2, 2), (2, -3)]:
            expected = aosys.C0(m, n)
            self.assertGreater(expected, 0.)
            for p in [1, -1]:
                var = np.sum(engine.multiLayerPSD(freq, m, n, p, 1e9))*df
                self.assertGreater(var/expected, 0.9, (m, n, p))
                self.assertLess(var/expected, 1.1, (m, n, p))

    def test_layer_norm(self):
        engine = fourierTemporalPSD(temporalSystem())
        self.assertGreater(engine.layerNorm(2, 1, 0, 1), 0.)
        # the norm does not depend on the wind
        self.assertEqual(engine.layerNorm(2, 1, 0), fourierTemporalPSD(temporalSystem(wSpeed=30.)).layerNorm(2, 1, 0))

    def test_tail(self):
        freq = frequencyGrid(200., 1.)
        engine = fourierTemporalPSD(temporalSystem())
        psd = engine.multiLayerPSD(freq, 1, 0, 1, 30.)
        self.assertAlmostEqual(psd[-1]/psd[-2], (100./99.)**(-17/3), places=12)
        self.assertAlmostEqual(psd[40]/psd[29], (41./30.)**(-17/3), places=12)

    def test_single_mode(self):
        engine = fourierTemporalPSD(temporalSystem(starMag=8.))
        tab = engine.temporalPSD(1, 0, 1.)
        self.assertEqual(tab.colnames, ['freq', 'PSD-OL', 'PSD-N', 'ETF-SI', 'NTF-SI', 'ETF-LP', 'NTF-LP'])
        self.assertEqual(len(tab), 100)
        self.assertTrue(np.all(tab['ETF-LP'] == -1))
        self.assertEqual(tab.meta['var_LP'], -1)
        self.assertEqual(tab.meta['gopt_LP'], -1)
        self.assertEqual(tab.meta['coef_LP'], [])
        self.assertTrue(0 < tab.meta['gopt_SI'] < tab.meta['gmax_SI'])
        self.assertLess(tab.meta['var_SI'], tab.meta['var_OL'])

    def test_single_mode_predictor(self):
        engine = fourierTemporalPSD(temporalSystem(starMag=8.))
        tab = engine.temporalPSD(1, 0, 1., lpNc=3)
        self.assertEqual(tab.meta['lpNc'], 3)
        self.assertEqual(len(tab.meta['coef_LP']), 3)
        self.assertAlmostEqual(sum(tab.meta['coef_LP']), 1., places=10)
        self.assertGreater(tab.meta['var_LP'], 0.)
        self.assertTrue(0 < tab.meta['gopt_LP'] < tab.meta['gmax_LP'])
        self.assertTrue(np.all(tab['ETF-LP'] >= 0))

    def test_loop_frequency(self):
        engine = fourierTemporalPSD(temporalSystem(minTauWFS=0.))
        with self.assertRaises(ConfigurationError):
            engine.temporalPSD(1, 0, 1.)

    def test_delay(self):
        engine = fourierTemporalPSD(temporalSystem(deltaTau=1e-3))
        go = engine.controller(frequencyGrid(200., 1.))
        self.assertAlmostEqual(go.delay, 1.7)

if __name__ == '__main__':
    unittest.main()
