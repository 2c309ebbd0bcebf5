# Application settings

# --- Pipeline Parameters ---
PIPELINE_DEFAULTS = {
    # Requested bin count before coercion to the canonical set
    "bins": 256,
    # "global" (one atomic per sample) or "local" (work-group partial histograms)
    "histogram": "local",
    # "simple", "hillis", "local" or "blelloch"
    "scan": "hillis",
    # Output intensity range for the lookup table
    "max_intensity": 255,
    # Default input image, as in the original coursework
    "input_file": "test.pgm",
}

# --- GPU Settings ---
GPU_SETTINGS = {
    # "auto" tries wgpu first and falls back to the NumPy reference executor
    "backend": "auto",
    "power_preference": "high-performance",
    # Work items per work group. Must be >= 256 so one group covers any bin count.
    "workgroup_size": 256,
    # Largest workgroup count wgpu accepts per dispatch dimension
    "max_workgroups_per_dim": 65535,
}

# --- Profiling ---
PROFILING_DEFAULTS = {
    # Resolution of the detailed per-stage report: "ns", "us", "ms" or "s"
    "detail_resolution": "us",
}

# --- UI Defaults ---
UI_DEFAULTS = {
    "preview_max_size": 800,
}

# --- Logging ---
LOGGING_LEVEL = "INFO" # Options: DEBUG, INFO, WARNING, ERROR
