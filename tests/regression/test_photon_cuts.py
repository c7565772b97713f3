import math
import unittest

from o2tasks import cuts_library
from o2tasks.photon_cuts import (
    ConstantWindow,
    EMCPhotonCut,
    EMCPhotonCuts,
    PowerLawWindow,
    StepFunction,
    V0PhotonCut,
    V0PhotonCuts,
)


def _cluster(**overrides):
    cluster = {"e": 2.0, "nCells": 3, "m02": 0.3, "time": 5.0, "eta": 0.1, "phi": 1.0, "isExotic": True}
    cluster.update(overrides)
    return cluster


def _track(**overrides):
    track = {"trackEta": 0.1, "trackPhi": 1.0, "trackPt": 1.0, "trackP": 1.0}
    track.update(overrides)
    return track


def _v0(**overrides):
    v0 = {"pt": 1.0, "eta": 0.2, "rxy": 30.0, "mee": 0.01, "psipair": 0.1}
    v0.update(overrides)
    return v0


def _leg(**overrides):
    leg = {
        "tpcNClsFound": 100,
        "tpcNClsCrossedRows": 110,
        "tpcCrossedRowsOverFindableCls": 0.9,
        "tpcChi2NCl": 1.2,
        "tpcNSigmaEl": 0.5,
    }
    leg.update(overrides)
    return leg


class TestWindows(unittest.TestCase):
    def test_power_law(self) -> None:
        window = PowerLawWindow(0.01, 4.07, -2.5)
        self.assertAlmostEqual(window(1.0), 0.01 + 5.07 ** -2.5)
        self.assertEqual(window.expression("trackPt"), "(0.01 + std::pow(trackPt + 4.07, -2.5))")

    def test_constant_and_step(self) -> None:
        self.assertEqual(ConstantWindow(-1.0)(123.0), -1.0)
        step = StepFunction(0.4, 0.06, 0.015)
        self.assertEqual(step(0.39), 0.06)
        self.assertEqual(step(0.4), 0.015)
        self.assertEqual(step.expression("psipair"), "(psipair < 0.4 ? 0.06 : 0.015)")


class TestEMCPhotonCut(unittest.TestCase):
    def test_energy_cut_is_strict(self) -> None:
        cut = cuts_library.get_emc_cut("standard")
        self.assertFalse(cut.is_selected_cut(_cluster(e=0.7), EMCPhotonCuts.ENERGY))
        self.assertTrue(cut.is_selected_cut(_cluster(e=0.71), EMCPhotonCuts.ENERGY))

    def test_m02_and_time_ranges_are_inclusive(self) -> None:
        cut = cuts_library.get_emc_cut("standard")
        self.assertTrue(cut.is_selected_cut(_cluster(m02=0.7), EMCPhotonCuts.M02))
        self.assertFalse(cut.is_selected_cut(_cluster(m02=0.71), EMCPhotonCuts.M02))
        self.assertTrue(cut.is_selected_cut(_cluster(time=-20.0), EMCPhotonCuts.TIMING))
        self.assertFalse(cut.is_selected_cut(_cluster(time=25.5), EMCPhotonCuts.TIMING))

    def test_track_matching(self) -> None:
        cut = cuts_library.get_emc_cut("standard")
        # Inside both windows with a low E/p: a charged-particle cluster.
        self.assertFalse(cut.is_selected_cut(_cluster(e=1.0), EMCPhotonCuts.TM, _track()))
        self.assertTrue(cut.is_selected_cut(_cluster(e=2.0), EMCPhotonCuts.TM, _track()))
        self.assertTrue(cut.is_selected_cut(_cluster(e=1.0), EMCPhotonCuts.TM, _track(trackEta=0.2)))
        self.assertTrue(cut.is_selected_cut(_cluster(e=1.0), EMCPhotonCuts.TM, _track(trackPhi=1.1)))
        self.assertTrue(cut.is_selected_cut(_cluster(e=1.0), EMCPhotonCuts.TM, None))

    def test_exotic_flag_is_required_when_enabled(self) -> None:
        cut = cuts_library.get_emc_cut("standard")
        self.assertTrue(cut.is_selected_cut(_cluster(isExotic=True), EMCPhotonCuts.EXOTIC))
        self.assertFalse(cut.is_selected_cut(_cluster(isExotic=False), EMCPhotonCuts.EXOTIC))
        cut.use_exotic_cut = False
        self.assertTrue(cut.is_selected_cut(_cluster(isExotic=False), EMCPhotonCuts.EXOTIC))
        self.assertEqual(cut.expression(EMCPhotonCuts.EXOTIC), "true")

    def test_failed_cut_follows_evaluation_order(self) -> None:
        cut = cuts_library.get_emc_cut("standard")
        self.assertIsNone(cut.failed_cut(_cluster(), _track(trackEta=1.0)))
        self.assertEqual(cut.failed_cut(_cluster(e=0.1, nCells=0)), EMCPhotonCuts.ENERGY)
        self.assertEqual(cut.failed_cut(_cluster(nCells=0, m02=5.0)), EMCPhotonCuts.NCELL)
        self.assertEqual(cut.failed_cut(_cluster(e=1.0), _track()), EMCPhotonCuts.TM)
        self.assertTrue(cut.is_selected(_cluster()))

    def test_nocut_accepts_matched_clusters(self) -> None:
        cut = cuts_library.get_emc_cut("nocut")
        self.assertTrue(cut.is_selected(_cluster(e=0.01, m02=900.0, time=-400.0, isExotic=False), _track()))

    def test_expression_uses_matching_columns(self) -> None:
        cut = cuts_library.get_emc_cut("standard")
        tm = cut.expression(EMCPhotonCuts.TM)
        self.assertTrue(tm.startswith("!hasTrack || std::abs(trackEta - eta) > (0.01 + std::pow(trackPt + 4.07, -2.5))"))
        self.assertTrue(tm.endswith("e / trackP >= 1.75"))
        self.assertEqual(cut.expression(EMCPhotonCuts.ENERGY), "e > 0.7")

    def test_non_renderable_window_is_rejected(self) -> None:
        cut = EMCPhotonCut("custom", track_matching_eta=lambda pt: 0.1)
        self.assertAlmostEqual(cut.track_matching_eta(3.0), 0.1)
        with self.assertRaisesRegex(ValueError, "cannot be rendered"):
            cut.expression(EMCPhotonCuts.TM)


class TestV0PhotonCut(unittest.TestCase):
    def test_leg_cuts_apply_to_both_legs(self) -> None:
        cut = cuts_library.get_pcm_cut("analysis")
        legs = (_leg(), _leg(tpcNSigmaEl=-3.5))
        self.assertFalse(cut.is_selected_cut(_v0(), V0PhotonCuts.TPC_NSIGMA_EL, legs))
        self.assertEqual(cut.failed_cut(_v0(), legs), V0PhotonCuts.TPC_NSIGMA_EL)
        self.assertTrue(cut.is_selected(_v0(), (_leg(), _leg())))

    def test_mee_depends_on_psipair(self) -> None:
        cut = cuts_library.get_pcm_cut("analysis")
        self.assertTrue(cut.is_selected_cut(_v0(mee=0.05, psipair=0.1), V0PhotonCuts.MEE))
        self.assertFalse(cut.is_selected_cut(_v0(mee=0.05, psipair=0.5), V0PhotonCuts.MEE))
        self.assertEqual(cut.expression(V0PhotonCuts.MEE), "mee <= (psipair < 0.4 ? 0.06 : 0.015)")
        nocut = cuts_library.get_pcm_cut("nocut")
        self.assertTrue(nocut.is_selected_cut(_v0(mee=1.0), V0PhotonCuts.MEE))
        self.assertEqual(nocut.expression(V0PhotonCuts.MEE), "true")

    def test_rxy_window_of_analysis_and_qc(self) -> None:
        analysis = cuts_library.get_pcm_cut("analysis")
        qc = cuts_library.get_pcm_cut("qc")
        self.assertFalse(analysis.is_selected_cut(_v0(rxy=0.5), V0PhotonCuts.RXY))
        self.assertTrue(qc.is_selected_cut(_v0(rxy=0.5), V0PhotonCuts.RXY))
        self.assertTrue(qc.is_selected_cut(_v0(rxy=150.0), V0PhotonCuts.RXY))
        self.assertFalse(analysis.is_selected_cut(_v0(rxy=150.0), V0PhotonCuts.RXY))

    def test_leg_expression_uses_prefixed_columns(self) -> None:
        cut = V0PhotonCut("legs", min_ncrossed_rows_tpc=30)
        self.assertEqual(
            cut.expression(V0PhotonCuts.TPC_CROSSED_ROWS),
            "(pos_tpcNClsCrossedRows >= 30) && (ele_tpcNClsCrossedRows >= 30)",
        )


class TestCutsLibrary(unittest.TestCase):
    def test_pcm_thresholds(self) -> None:
        cut = cuts_library.get_pcm_cut("analysis")
        self.assertEqual((cut.min_pt, cut.max_pt), (0.01, 1e10))
        self.assertEqual((cut.min_eta, cut.max_eta), (-0.9, 0.9))
        self.assertEqual(cut.min_ncrossed_rows_tpc, 30)
        self.assertEqual(cut.min_ncrossed_rows_over_findable_clusters_tpc, 0.6)
        self.assertEqual(cut.max_chi2_per_cluster_tpc, 4.0)
        self.assertEqual((cut.min_tpc_nsigma_el, cut.max_tpc_nsigma_el), (-3.0, 3.0))
        self.assertEqual((cut.min_rxy, cut.max_rxy), (1.0, 90.0))
        self.assertEqual(cuts_library.get_pcm_cut("nocut").min_ncrossed_rows_tpc, 20)

    def test_emc_thresholds(self) -> None:
        cut = cuts_library.get_emc_cut("standard")
        self.assertEqual(cut.min_e, 0.7)
        self.assertEqual(cut.min_ncell, 1)
        self.assertEqual((cut.min_m02, cut.max_m02), (0.1, 0.7))
        self.assertEqual((cut.min_time, cut.max_time), (-20.0, 25.0))
        self.assertAlmostEqual(cut.track_matching_phi(2.0), 0.015 + 5.65 ** -2.0)
        self.assertTrue(cut.use_exotic_cut)
        nocut = cuts_library.get_emc_cut("nocut")
        self.assertEqual((nocut.min_m02, nocut.max_m02), (0.0, 1000.0))
        self.assertFalse(nocut.use_exotic_cut)

    def test_each_call_returns_a_fresh_cut(self) -> None:
        first = cuts_library.get_emc_cut("standard")
        first.min_e = 5.0
        self.assertEqual(cuts_library.get_emc_cut("standard").min_e, 0.7)

    def test_unknown_cut_is_logged_and_none(self) -> None:
        with self.assertLogs("o2tasks.cuts", level="INFO") as logs:
            self.assertIsNone(cuts_library.get_emc_cut("tight"))
            self.assertIsNone(cuts_library.get_pcm_cut("tight"))
        self.assertEqual(len(logs.records), 2)
        self.assertIn("Did not find cut tight", logs.output[0])

    def test_available_cuts(self) -> None:
        self.assertEqual(cuts_library.available_cuts(), {"emc": ["standard", "nocut"], "pcm": ["analysis", "qc", "nocut"]})

    def test_cut_from_config_overrides_base(self) -> None:
        cut = cuts_library.cut_from_config(
            "emc",
            "tight",
            {"base": "standard", "min_e": 1, "min_ncell": 2.0, "use_exotic_cut": False, "track_matching_eta": 0.02},
        )
        self.assertEqual(cut.name, "tight")
        self.assertEqual(cut.min_e, 1.0)
        self.assertIsInstance(cut.min_ncell, int)
        self.assertFalse(cut.use_exotic_cut)
        self.assertEqual(cut.track_matching_eta, ConstantWindow(0.02))
        self.assertEqual(cut.track_matching_phi, PowerLawWindow(0.015, 3.65, -2.0))

    def test_cut_from_config_windows(self) -> None:
        cut = cuts_library.cut_from_config(
            "pcm", "wide", {"max_rxy": 120, "max_mee_psi_pair_dep": {"threshold": 0.3, "below": 0.1, "above": 0.02}}
        )
        self.assertEqual(cut.min_ncrossed_rows_tpc, 20)
        self.assertEqual(cut.max_rxy, 120.0)
        self.assertTrue(math.isclose(cut.max_mee_psi_pair_dep(0.5), 0.02))

    def test_cut_from_config_errors(self) -> None:
        with self.assertRaisesRegex(ValueError, "Unknown cut detector"):
            cuts_library.cut_from_config("phos", "x", {})
        with self.assertRaisesRegex(ValueError, "unknown emc cut 'loose'"):
            cuts_library.cut_from_config("emc", "x", {"base": "loose"})
        with self.assertRaisesRegex(ValueError, "Unknown field 'photon_qa.custom_pcm.x.min_e'"):
            cuts_library.cut_from_config("pcm", "x", {"min_e": 1.0})
        with self.assertRaisesRegex(ValueError, "must be a number"):
            cuts_library.cut_from_config("emc", "x", {"track_matching_phi": {"offset": 1.0}})


if __name__ == "__main__":
    unittest.main()
