import os
import tempfile
import unittest

from o2tasks.histograms import AxisSpec, HistogramRegistry


def _import_root_or_none():
    try:
        import ROOT  # type: ignore

        return ROOT
    except Exception:
        return None


class TestRootIO(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.ROOT = _import_root_or_none()

    def setUp(self) -> None:
        if self.ROOT is None:
            self.skipTest("ROOT not available")
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        if self.ROOT is not None:
            self.tmp.cleanup()

    def test_registry_sums_results_and_writes_empty_hists(self) -> None:
        from o2tasks.root_io import book, write_registries
        from o2tasks.tasks_common import add_result, run_graphs

        reg = HistogramRegistry("Histos")
        reg.add("data/pthist", "pt", "TH1D", [AxisSpec(10, 0.0, 10.0, "pt")])
        reg.add("data/unused", "unused", "TH1D", [AxisSpec(5, 0.0, 1.0, "x")])
        reg.add("top", "top", "TH1F", [AxisSpec(10, 0.0, 10.0, "pt")])

        df = self.ROOT.RDataFrame(8).Define("x", "double(rdfentry_)")
        results: dict = {}
        add_result(results, "Histos", "data/pthist", book(df, reg.get("data/pthist"), ["x"]))
        add_result(results, "Histos", "data/pthist", book(df.Filter("x < 3"), reg.get("data/pthist"), ["x"]))
        add_result(results, "Histos", "top", book(df, reg.get("top"), ["x"]))
        run_graphs([r for hists in results.values() for rs in hists.values() for r in rs])

        out_path = os.path.join(self.tmp.name, "out", "AnalysisResults.root")
        write_registries(out_path, [reg], results)

        f = self.ROOT.TFile.Open(out_path)
        try:
            self.assertEqual(int(f.Get("Histos/data/pthist").GetEntries()), 11)
            self.assertEqual(int(f.Get("Histos/data/unused").GetEntries()), 0)
            self.assertEqual(f.Get("Histos/data/unused").GetNbinsX(), 5)
            self.assertEqual(int(f.Get("Histos/top").GetEntries()), 8)
        finally:
            f.Close()

    def test_sparse_histogram_is_filled(self) -> None:
        from o2tasks.root_io import book

        reg = HistogramRegistry("Histos")
        spec = reg.add("MC/thn", "thn", "THnSparseF", [AxisSpec(4, 0.0, 4.0, f"a{i}") for i in range(7)])
        df = self.ROOT.RDataFrame(4).Define("x", "int(rdfentry_)")
        thn = book(df, spec, ["x"] * 7)
        self.assertEqual(int(thn.GetValue().GetEntries()), 4)
        self.assertEqual(thn.GetValue().GetNdimensions(), 7)

    def test_bc_ranges_per_directory(self) -> None:
        from o2tasks.tasks_bc_range import check_against_range_file, check_per_directory

        path = os.path.join(self.tmp.name, "AO2D.root")
        opts = self.ROOT.RDF.RSnapshotOptions()
        opts.fMode = "UPDATE"
        ranges = self.ROOT.RDataFrame(2).Define("fBCstart", "ULong64_t(rdfentry_ * 200)").Define("fBCend", "fBCstart + 99")
        decisions = (
            self.ROOT.RDataFrame(4)
            .Define("fGlobalBCId", "ULong64_t(rdfentry_ * 150)")
            .Define("fCefpSelected", "ULong64_t(rdfentry_ != 3)")
        )
        ranges.Snapshot("DF_1/O2bcranges", path, ["fBCstart", "fBCend"], opts)
        decisions.Snapshot("DF_1/O2cefpdecision", path, ["fGlobalBCId", "fCefpSelected"], opts)
        decisions.Snapshot("DF_2/O2cefpdecision", path, ["fGlobalBCId", "fCefpSelected"], opts)

        with self.assertLogs("o2tasks.tasks", level="ERROR") as logs:
            summaries = check_per_directory(path, "O2bcranges", "O2cefpdecision")
        self.assertIn("DF_2", logs.output[0])
        self.assertEqual(len(summaries), 1)
        self.assertEqual(summaries[0].directory, "DF_1")
        self.assertEqual((summaries[0].n_selected, summaries[0].n_not_found), (3, 2))

        combined = check_against_range_file(path, path, "O2bcranges", "O2cefpdecision")
        self.assertEqual(combined.directory, "*")
        self.assertEqual((combined.n_selected, combined.n_not_found), (6, 4))

    def test_list_directories_skips_plain_objects(self) -> None:
        from o2tasks.root_io import list_directories

        path = os.path.join(self.tmp.name, "mixed.root")
        f = self.ROOT.TFile.Open(path, "RECREATE")
        f.mkdir("DF_1")
        f.mkdir("DF_2")
        hist = self.ROOT.TH1D("hTop", "hTop", 1, 0.0, 1.0)
        hist.SetDirectory(0)
        f.WriteTObject(hist, "hTop")
        f.Close()

        f = self.ROOT.TFile.Open(path)
        try:
            self.assertEqual(len(f.GetListOfKeys()), 3)
            self.assertEqual(list_directories(f), ["DF_1", "DF_2"])
        finally:
            f.Close()


class TestPhotonQA(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.ROOT = _import_root_or_none()

    def setUp(self) -> None:
        if self.ROOT is None:
            self.skipTest("ROOT not available")

    def test_photon_config_needs_a_process_and_cuts(self) -> None:
        from o2tasks import settings as s
        from o2tasks.tasks_photon import validate_photon_config

        def photon(**overrides):
            return s.current_runtime_config({"photon_qa": overrides}).photon_qa

        validate_photon_config(photon())
        with self.assertRaisesRegex(ValueError, "No photon_qa process switch enabled"):
            validate_photon_config(photon(process_emc=False))
        with self.assertRaisesRegex(ValueError, "emc_cuts is empty"):
            validate_photon_config(photon(emc_cuts=[]))
        with self.assertRaisesRegex(ValueError, "pcm_cuts is empty"):
            validate_photon_config(photon(process_pcm=True, pcm_cuts=[]))

    def test_unknown_cut_name_is_fatal(self) -> None:
        from o2tasks.tasks_photon import resolve_cuts

        with self.assertRaisesRegex(ValueError, "Unknown emc cut 'tight'"):
            resolve_cuts("emc", ["standard", "tight"], {})
        cuts = resolve_cuts("emc", ["tight"], {"tight": {"base": "standard", "min_e": 1.2}})
        self.assertEqual(cuts[0].min_e, 1.2)

    def test_cut_flow_counts_survivors(self) -> None:
        from o2tasks import cuts_library
        from o2tasks.tasks_common import collect_rresult_ptrs, run_graphs
        from o2tasks.tasks_photon import _fill_cut_flow, book_photon_qa

        clusters = (
            self.ROOT.RDataFrame(4)
            .Define("e", "0.5 * (rdfentry_ + 1)")
            .Define("nCells", "2")
            .Define("m02", "0.3")
            .Define("time", "0.0")
            .Define("eta", "0.1")
            .Define("phi", "1.0")
            .Define("pt", "e / std::cosh(eta)")
            .Define("isExotic", "true")
            .Define("hasTrack", "false")
            .Define("trackEta", "0.f")
            .Define("trackPhi", "0.f")
            .Define("trackPt", "0.f")
            .Define("trackP", "1.f")
        )
        bundle = book_photon_qa(clusters, None, [cuts_library.get_emc_cut("standard")], [])
        run_graphs(collect_rresult_ptrs([bundle["results"], [flow[3] for flow in bundle["flows"]]]))
        for reg, cut_name, enum_type, counts in bundle["flows"]:
            _fill_cut_flow(reg, cut_name, enum_type, counts, bundle["results"])

        (flow,) = bundle["results"]["EMC"]["standard/hCutFlow"]
        self.assertEqual([int(flow.GetBinContent(i)) for i in range(1, 8)], [4, 3, 3, 3, 3, 3, 3])
        self.assertEqual(flow.GetXaxis().GetBinLabel(2), "kEnergy")
        (energy,) = bundle["results"]["EMC"]["standard/hE"]
        self.assertEqual(int(energy.GetValue().GetEntries()), 3)


if __name__ == "__main__":
    unittest.main()
