from array import array
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Sequence

import ROOT

from .histograms import HistogramRegistry, HistSpec
from .tasks_common import run_graphs
from .qa_match import PDG_CHOICE, PDG_NOT_LISTED, PROCESS_DECAY, SPECIES_INDEX, SPECIES_OTHER

LOGGER = logging.getLogger("o2tasks.io")

_DECLARED = False
# Chains added as friends must outlive the dataframe built on top of them.
_KEEP_ALIVE: list[Any] = []


def expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(str(path)))


def ensure_parent(path: str) -> None:
    Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)


def _species_switch() -> str:
    cases = "\n".join(f"            case {pdg}: return {idx};" for pdg, idx in SPECIES_INDEX.items())
    return cases


def declare_helpers() -> None:
    global _DECLARED
    if _DECLARED:
        return
    pdg_list = ", ".join(str(pdg) for pdg in PDG_CHOICE)
    ROOT.gInterpreter.Declare(
        r'''
        #include <cmath>
        #include <memory>
        #include "ROOT/RDataFrame.hxx"
        #include "ROOT/RVec.hxx"
        #include "THnSparse.h"
        float o2tasks_eta(float tgl) { return -std::log(std::tan(0.25f * float(M_PI) - 0.5f * std::atan(tgl))); }
        float o2tasks_phi(float snp, float alpha) {
          float phi = std::asin(snp) + alpha;
          phi = std::fmod(phi, 2.f * float(M_PI));
          return phi < 0.f ? phi + 2.f * float(M_PI) : phi;
        }
        double o2tasks_rapidity(double pt, double eta, double mass) {
          double mt = std::hypot(pt, mass);
          return std::asinh(pt / mt * std::sinh(eta));
        }
        float o2tasks_delta_phi(float delta) {
          if (delta > float(M_PI)) delta -= 2.f * float(M_PI);
          if (delta < -float(M_PI)) delta += 2.f * float(M_PI);
          return delta;
        }
        float o2tasks_pt_inner_wall(float innerParam, float tgl) { return innerParam / std::sqrt(1.f + tgl * tgl); }
        int o2tasks_hits_in_layers(unsigned int clusterMap, unsigned int layerMask) {
          int n = 0;
          for (int i = 0; i < 7; i++) n += ((clusterMap & layerMask) >> i) & 1u;
          return n;
        }
        int o2tasks_its_ncls(unsigned int clusterMap) { return o2tasks_hits_in_layers(clusterMap, 0x7Fu); }
        ROOT::RVec<int> o2tasks_its_hit_layers(unsigned int clusterMap) {
          ROOT::RVec<int> layers;
          for (int i = 0; i < 7; i++) if (clusterMap & (1u << i)) layers.push_back(i);
          if (layers.empty()) layers.push_back(-1);
          return layers;
        }
        ROOT::RVec<int> o2tasks_its_hit_counts(unsigned int clusterMap) {
          ROOT::RVec<int> layers = o2tasks_its_hit_layers(clusterMap);
          return ROOT::RVec<int>(layers.size(), o2tasks_its_ncls(clusterMap));
        }
        int o2tasks_origin_index(bool isPhysicalPrimary, int process) {
          if (isPhysicalPrimary) return 0;
          return process == ''' + str(PROCESS_DECAY) + r''' ? 1 : 2;
        }
        int o2tasks_species_index(int absPdg) {
          switch (absPdg) {
''' + _species_switch() + r'''
            default: return ''' + str(SPECIES_OTHER) + r''';
          }
        }
        float o2tasks_pdg_class(int absPdg) {
          static const int choice[] = {''' + pdg_list + r'''};
          for (unsigned int i = 0; i < sizeof(choice) / sizeof(int); i++) {
            if (choice[i] == absPdg) return i + 1.5f;
          }
          return ''' + repr(PDG_NOT_LISTED) + r''';
        }

        class O2TasksSparseFiller : public ROOT::Detail::RDF::RActionImpl<O2TasksSparseFiller> {
        public:
          using Result_t = THnSparseF;
          O2TasksSparseFiller(std::shared_ptr<THnSparseF> h, unsigned int nSlots) : fFinal(h) {
            for (unsigned int i = 0; i < nSlots; i++) {
              fSlots.emplace_back(static_cast<THnSparseF *>(h->Clone()));
              fSlots.back()->Reset();
            }
          }
          O2TasksSparseFiller(O2TasksSparseFiller &&) = default;
          O2TasksSparseFiller(const O2TasksSparseFiller &) = delete;
          std::shared_ptr<THnSparseF> GetResultPtr() const { return fFinal; }
          void Initialize() {}
          void InitTask(TTreeReader *, unsigned int) {}
          template <typename... Cols>
          void Exec(unsigned int slot, Cols... values) {
            double x[] = {static_cast<double>(values)...};
            fSlots[slot]->Fill(x);
          }
          void Finalize() {
            for (auto &h : fSlots) fFinal->Add(h.get());
          }
          std::string GetActionName() { return "O2TasksSparseFiller"; }

        private:
          std::shared_ptr<THnSparseF> fFinal;
          std::vector<std::unique_ptr<THnSparseF>> fSlots;
        };

        ROOT::RDF::RResultPtr<THnSparseF> o2tasks_book_sparse7(ROOT::RDF::RNode df, const char *name, const char *title,
                                                               const std::vector<int> &nbins, const std::vector<double> &xmin,
                                                               const std::vector<double> &xmax, const std::vector<std::string> &cols) {
          auto h = std::make_shared<THnSparseF>(name, title, 7, nbins.data(), xmin.data(), xmax.data());
          return df.Book<double, double, double, double, double, double, double>(
              O2TasksSparseFiller(h, df.GetNSlots()), cols);
        }
        '''
    )
    _DECLARED = True


def write_hist(obj: Any, name: str | None = None) -> None:
    hist = obj.GetValue() if hasattr(obj, "GetValue") else obj
    if name:
        hist.Write(name)
    else:
        hist.Write()


def open_chain(tree_name: str, input_files: str | Sequence[str], mode: str = "DF") -> Any:
    """Chain `tree_name` from every DF_* directory (mode "DF") or from the file top level (mode "tree")."""
    files = [input_files] if isinstance(input_files, str) else list(input_files)
    chain = ROOT.TChain(tree_name)
    for file_name in files:
        file_name = expand(file_name)
        if mode == "tree":
            chain.Add(f"{file_name}/{tree_name}")
            continue
        root_file = ROOT.TFile.Open(file_name)
        if not root_file or root_file.IsZombie():
            raise RuntimeError(f"Cannot open input file '{file_name}'.")
        for key in root_file.GetListOfKeys():
            key_name = key.GetName()
            if key_name.startswith("DF_"):
                chain.Add(f"{file_name}/{key_name}/{tree_name}")
        root_file.Close()
    if chain.GetNtrees() == 0:
        raise RuntimeError(f"No '{tree_name}' tree found in {', '.join(files)} (mode={mode}).")
    LOGGER.debug("chained %d trees for %s", chain.GetNtrees(), tree_name)
    return chain


def build_rdf_from_ao2d(
    tree_name: str,
    input_files: str | Sequence[str],
    friends: Iterable[str] = (),
    mode: str = "DF",
) -> Any:
    chain = open_chain(tree_name, input_files, mode)
    for friend in friends:
        friend_chain = open_chain(friend, input_files, mode)
        if friend_chain.GetEntries() != chain.GetEntries():
            raise RuntimeError(
                f"Friend tree '{friend}' has {friend_chain.GetEntries()} entries, '{tree_name}' has {chain.GetEntries()}."
            )
        chain.AddFriend(friend_chain)
        _KEEP_ALIVE.append(friend_chain)
    _KEEP_ALIVE.append(chain)
    return ROOT.RDataFrame(chain)


def column_names(df: Any) -> set[str]:
    return {str(name) for name in df.GetColumnNames()}


def apply_column_aliases(df: Any, columns: dict[str, str]) -> Any:
    available = column_names(df)
    for logical, branch in columns.items():
        if logical in available or branch not in available:
            continue
        df = df.Alias(logical, branch)
        available.add(logical)
    return df


# Logical track columns derived from the AO2D branches: (name, expression, required columns).
TRACK_COLUMNS = (
    ("pt", "1.f / std::abs(fSigned1Pt)", ("fSigned1Pt",)),
    ("sign", "(fSigned1Pt > 0) - (fSigned1Pt < 0)", ("fSigned1Pt",)),
    ("eta", "o2tasks_eta(fTgl)", ("fTgl",)),
    ("phi", "o2tasks_phi(fSnp, fAlpha)", ("fSnp", "fAlpha")),
    ("p", "pt * std::sqrt(1.f + fTgl * fTgl)", ("pt", "fTgl")),
    ("tpcInnerParam", "fTPCInnerParam", ("fTPCInnerParam",)),
    ("tpcSignal", "fTPCSignal", ("fTPCSignal",)),
    ("tpcNClsFound", "int(fTPCNClsFindable) - int(fTPCNClsFindableMinusFound)", ("fTPCNClsFindable", "fTPCNClsFindableMinusFound")),
    ("tpcNClsCrossedRows", "int(fTPCNClsFindable) - int(fTPCNClsFindableMinusCrossedRows)", ("fTPCNClsFindable", "fTPCNClsFindableMinusCrossedRows")),
    ("tpcCrossedRowsOverFindableCls", "fTPCNClsFindable > 0 ? float(tpcNClsCrossedRows) / fTPCNClsFindable : 0.f", ("tpcNClsCrossedRows", "fTPCNClsFindable")),
    ("tpcChi2NCl", "fTPCChi2NCl", ("fTPCChi2NCl",)),
    ("itsChi2NCl", "fITSChi2NCl", ("fITSChi2NCl",)),
    ("itsClusterMap", "static_cast<unsigned int>(fITSClusterMap)", ("fITSClusterMap",)),
    ("itsNCls", "o2tasks_its_ncls(itsClusterMap)", ("itsClusterMap",)),
    ("hasITS", "itsClusterMap > 0", ("itsClusterMap",)),
    ("hasTPC", "fTPCNClsFindable > 0", ("fTPCNClsFindable",)),
    ("hasTRD", "fTRDPattern > 0", ("fTRDPattern",)),
    ("hasTOF", "fTOFChi2 >= 0.f && fTOFExpMom > 0.f", ("fTOFChi2", "fTOFExpMom")),
    ("passedITSRefit", "hasITS", ("hasITS",)),
    ("passedTPCRefit", "hasTPC", ("hasTPC",)),
    ("isPVContributor", "(fFlags & 0x2) != 0", ("fFlags",)),
    ("dcaXY", "fDcaXY", ("fDcaXY",)),
    ("dcaZ", "fDcaZ", ("fDcaZ",)),
    ("ptInnerWallTPC", "o2tasks_pt_inner_wall(tpcInnerParam, fTgl)", ("tpcInnerParam", "fTgl")),
)


def define_track_columns(df: Any, columns: dict[str, str] | None = None) -> Any:
    """Alias configured branches, then derive the missing logical track columns."""
    declare_helpers()
    if columns:
        df = apply_column_aliases(df, columns)
    available = column_names(df)
    for name, expression, required in TRACK_COLUMNS:
        if name in available or not all(r in available for r in required):
            continue
        df = df.Define(name, expression)
        available.add(name)
    return df


def require_columns(df: Any, names: Iterable[str], context: str) -> None:
    missing = sorted(set(names) - column_names(df))
    if missing:
        raise RuntimeError(f"{context}: missing input columns {', '.join(missing)}.")


def _edges(axis: Any) -> Any:
    if axis.variable:
        return array("d", axis.edges)
    width = (axis.hi - axis.lo) / axis.nbins
    return array("d", [axis.lo + i * width for i in range(axis.nbins)] + [axis.hi])


def model_for(spec: HistSpec) -> Any:
    name, title, axes = spec.basename, spec.full_title(), spec.axes
    if spec.kind == "THnSparseF":
        raise ValueError(f"{spec.name}: {spec.kind} has no dataframe model, use book().")
    if spec.ndim == 1:
        (x,) = axes
        if x.variable:
            return ROOT.RDF.TH1DModel(name, title, x.nbins, _edges(x))
        return ROOT.RDF.TH1DModel(name, title, x.nbins, x.lo, x.hi)
    if spec.ndim == 2:
        x, y = axes
        if x.variable or y.variable:
            return ROOT.RDF.TH2DModel(name, title, x.nbins, _edges(x), y.nbins, _edges(y))
        return ROOT.RDF.TH2DModel(name, title, x.nbins, x.lo, x.hi, y.nbins, y.lo, y.hi)
    x, y, z = axes
    if x.variable or y.variable or z.variable:
        return ROOT.RDF.TH3DModel(name, title, x.nbins, _edges(x), y.nbins, _edges(y), z.nbins, _edges(z))
    return ROOT.RDF.TH3DModel(name, title, x.nbins, x.lo, x.hi, y.nbins, y.lo, y.hi, z.nbins, z.lo, z.hi)


def _std_vector(kind: str, values: Iterable[Any]) -> Any:
    out = ROOT.std.vector[kind]()
    for value in values:
        out.push_back(value)
    return out


def _empty_sparse(spec: HistSpec) -> Any:
    return ROOT.THnSparseF(
        spec.basename,
        spec.full_title(),
        spec.ndim,
        array("i", [axis.nbins for axis in spec.axes]),
        array("d", [axis.lo for axis in spec.axes]),
        array("d", [axis.hi for axis in spec.axes]),
    )


def book(df: Any, spec: HistSpec, columns: Sequence[str]) -> Any:
    if len(columns) != spec.ndim:
        raise ValueError(f"{spec.name}: {spec.ndim} axes but {len(columns)} columns.")
    if spec.kind == "THnSparseF":
        if spec.ndim != 7 or any(axis.variable for axis in spec.axes):
            raise ValueError(f"{spec.name}: only 7 fixed-width axes are supported for {spec.kind}.")
        declare_helpers()
        # The filler reads doubles only.
        names = []
        for i, column in enumerate(columns):
            cast = f"o2tasks_sparse_{spec.basename}_{i}"
            df = df.Define(cast, f"static_cast<double>({column})")
            names.append(cast)
        return ROOT.o2tasks_book_sparse7(
            ROOT.RDF.AsRNode(df),
            spec.basename,
            spec.full_title(),
            _std_vector("int", [axis.nbins for axis in spec.axes]),
            _std_vector("double", [axis.lo for axis in spec.axes]),
            _std_vector("double", [axis.hi for axis in spec.axes]),
            _std_vector("std::string", names),
        )
    model = model_for(spec)
    if spec.ndim == 1:
        return df.Histo1D(model, columns[0])
    if spec.ndim == 2:
        return df.Histo2D(model, columns[0], columns[1])
    return df.Histo3D(model, columns[0], columns[1], columns[2])


def _value(result: Any) -> Any:
    return result.GetValue() if hasattr(result, "GetValue") else result


def empty_hist(spec: HistSpec) -> Any:
    if spec.kind == "THnSparseF":
        return _empty_sparse(spec)
    hist = model_for(spec).GetHistogram().Clone(spec.basename)
    hist.SetDirectory(ROOT.nullptr)
    return hist


def _merged_histogram(spec: HistSpec, results: list[Any]) -> Any:
    if not results:
        return empty_hist(spec)
    merged = _value(results[0]).Clone(spec.basename)
    for result in results[1:]:
        merged.Add(_value(result))
    return merged


def write_registry(out_dir: Any, registry: HistogramRegistry, results: dict[str, list[Any]]) -> None:
    """Write every declared histogram; several booked results for one name are summed, unbooked ones are empty."""
    reg_dir = out_dir.mkdir(registry.name)
    subdirs: dict[str, Any] = {}
    for spec in registry:
        target = reg_dir
        if spec.directory:
            if spec.directory not in subdirs:
                subdirs[spec.directory] = reg_dir.mkdir(spec.directory)
            target = subdirs[spec.directory]
        target.cd()
        hist = _merged_histogram(spec, results.get(spec.name, []))
        if hasattr(hist, "SetDirectory"):
            hist.SetDirectory(ROOT.nullptr)
        write_hist(hist, spec.basename)


def write_registries(output_file: str, registries: Iterable[HistogramRegistry], results: dict[str, dict[str, list[Any]]]) -> None:
    output_file = expand(output_file)
    ensure_parent(output_file)
    out = ROOT.TFile(output_file, "recreate")
    for registry in registries:
        write_registry(out, registry, results.get(registry.name, {}))
    out.Close()
    LOGGER.info("histograms written to %s", output_file)


def list_directories(root_file: Any) -> list[str]:
    names = []
    for key in root_file.GetListOfKeys():
        cls = ROOT.TClass.GetClass(key.GetClassName())
        if cls and cls.InheritsFrom("TDirectory"):
            names.append(key.GetName())
    return names


def read_uint64_columns(tree: Any, columns: Sequence[str]) -> dict[str, list[int]]:
    """Materialise integer branches of a small tree with dataframe Take actions."""
    df = ROOT.RDataFrame(tree)
    takes = {column: df.Take["ULong64_t"](column) for column in columns}
    run_graphs(list(takes.values()))
    return {column: [int(v) for v in take.GetValue()] for column, take in takes.items()}
