# Importing the stage modules registers their reference kernels
from .bins import CANONICAL_BIN_COUNTS, parse_bin_request, resolve_bin_count
from .histogram import HistogramStrategy, bin_index, get_histogram_builder
from .scan import ScanAlgorithm, exclusive_to_inclusive, inclusive_to_exclusive, get_scan_engine
from .normalise import Normalizer, normalise_lut
from .back_projection import BackProjector
from .pipeline import (
    EqualizationResult,
    PipelineConfig,
    PipelineOrchestrator,
    PipelineState,
)
