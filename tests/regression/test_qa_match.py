import unittest

from o2tasks import qa_match
from o2tasks import settings as s
from o2tasks.track_selection import TrackCuts


def _cfg(**overrides):
    return s.current_runtime_config({"qa_match_eff": overrides}).qa_match_eff


def _mc_cfg(**overrides):
    base = {"is_mc": True, "process_data_no_coll": False, "process_mc_no_coll": True}
    base.update(overrides)
    return _cfg(**base)


class TestProcessSwitches(unittest.TestCase):
    def test_default_is_valid(self) -> None:
        qa_match.validate_process_switches(_cfg())
        qa_match.validate_process_switches(_mc_cfg())

    def test_data_and_mc_mismatch(self) -> None:
        with self.assertRaisesRegex(ValueError, "set for data and an MC process"):
            qa_match.validate_process_switches(_cfg(process_mc=True))
        with self.assertRaisesRegex(ValueError, "set for MC and a data process"):
            qa_match.validate_process_switches(_mc_cfg(process_data=True))

    def test_collision_tag_modes_are_exclusive(self) -> None:
        with self.assertRaisesRegex(ValueError, "without collision tag and with collision tag"):
            qa_match.validate_process_switches(_cfg(process_data=True))

    def test_thn_needs_dca(self) -> None:
        with self.assertRaisesRegex(ValueError, "No DCA for IU tracks"):
            qa_match.validate_process_switches(
                _cfg(process_data_no_coll=False, process_trk_iu_data=True, make_thn=True)
            )

    def test_nothing_enabled(self) -> None:
        with self.assertRaisesRegex(ValueError, "No qa_match_eff process switch"):
            qa_match.validate_process_switches(_cfg(process_data_no_coll=False))


class TestMCClassification(unittest.TestCase):
    def test_pdg_class(self) -> None:
        self.assertEqual(qa_match.pdg_class(211), 1.5)
        self.assertEqual(qa_match.pdg_class(-211), 1.5)
        self.assertEqual(qa_match.pdg_class(2212), 11.5)
        self.assertEqual(qa_match.pdg_class(1114), 12.5)
        self.assertEqual(qa_match.pdg_class(11), qa_match.PDG_NOT_LISTED)

    def test_origin_and_species(self) -> None:
        self.assertEqual(qa_match.origin_index(True, 4), qa_match.ORIGIN_PRIMARY)
        self.assertEqual(qa_match.origin_index(False, 4), qa_match.ORIGIN_DECAY)
        self.assertEqual(qa_match.origin_index(False, 13), qa_match.ORIGIN_MATERIAL)
        self.assertEqual(qa_match.species_index(-11), 1)
        self.assertEqual(qa_match.species_index(2212), 4)
        self.assertEqual(qa_match.species_index(3122), 5)

    def test_trd_expression(self) -> None:
        self.assertEqual(qa_match.trd_expression(1), "hasTRD")
        self.assertEqual(qa_match.trd_expression(0), "!hasTRD")
        self.assertEqual(qa_match.trd_expression(2), "true")


class TestSelections(unittest.TestCase):
    def test_track_selection_from_config(self) -> None:
        sel = qa_match.build_track_selection(_cfg(custom_its_hitmap=7, custom_min_its_hits=2))
        self.assertEqual((sel.min_pt, sel.max_pt), (0.1, 100.0))
        self.assertEqual(sel.min_ncrossed_rows_tpc, 70)
        self.assertEqual(sel.expression(TrackCuts.ITS_HITS), "o2tasks_hits_in_layers(itsClusterMap, 7) >= 2")

    def test_selections_disabled_by_default(self) -> None:
        cfg = _cfg()
        sel = qa_match.build_track_selection(cfg)
        self.assertEqual(qa_match.kine_expression(cfg, sel), "true")
        self.assertEqual(qa_match.tpc_expression(cfg, sel), "true")
        self.assertEqual(qa_match.its_expression(cfg, sel), "true")

    def test_inner_wall_pt_extends_kinematic_cut(self) -> None:
        cfg = _cfg(use_track_selections=True, use_tpc_inner_wall_pt=True)
        expr = qa_match.kine_expression(cfg, qa_match.build_track_selection(cfg))
        self.assertTrue(expr.endswith("&& (ptInnerWallTPC >= 0.1)"))
        self.assertIn("std::abs(dcaXY) <= 1000000.0", expr)


class TestQARegistry(unittest.TestCase):
    def test_data_registry(self) -> None:
        reg = qa_match.build_registry(_cfg(), mc=False)
        self.assertEqual(reg.name, "Histos")
        self.assertEqual(len(reg), 25)
        self.assertIn("data/pthist_tpcits_neg", reg)
        self.assertNotIn("data/thnsforfrac", reg)
        self.assertEqual(reg.get("data/etahist_tpc_05").title, "#eta distribution - data TPC tag, #it{p}_{T}>0.5")

    def test_mc_registry(self) -> None:
        cfg = _mc_cfg(make_thn=True)
        reg = qa_match.build_registry(cfg, mc=True)
        self.assertEqual(len(reg), 96)
        thn = reg.get("MC/thnsforfrac")
        self.assertEqual(thn.kind, "THnSparseF")
        self.assertEqual([a.nbins for a in thn.axes], [600, 30, 18, 20, 3, 3, 5])
        self.assertEqual(reg.get("MC/pdghist_num").axes[0].nbins, 14)
        self.assertIn("MC/phihist_tpcits_nopi", reg)

    def test_every_fill_targets_a_declared_histogram(self) -> None:
        for mc in (False, True):
            cfg = _mc_cfg(make_thn=True) if mc else _cfg(make_thn=True)
            reg = qa_match.build_registry(cfg, mc)
            plan = qa_match.fill_plan(cfg, mc)
            self.assertEqual(len(plan), len(reg))
            for fill in plan:
                self.assertEqual(len(fill.columns), reg.get(fill.hist).ndim, fill.hist)

    def test_matched_material_pions_are_counted_as_decays(self) -> None:
        plan = {f.hist: f for f in qa_match.fill_plan(_mc_cfg(), mc=True)}
        self.assertEqual(plan["MC/pthist_tpcits_pi_secm"].selection, "tpcItsTag && (false)")
        self.assertEqual(plan["MC/pthist_tpcits_pi_secd"].selection, "tpcItsTag && (mcAbsPdg == 211 && !mcIsPhysicalPrimary)")
        self.assertEqual(plan["MC/pthist_tpc_pi_secm"].selection, "tpcTag && (mcAbsPdg == 211 && !mcIsPhysicalPrimary && mcProcess != 4)")


if __name__ == "__main__":
    unittest.main()
