"""
Hands vs Feet Motor Imagery analysis package

Spectral feature extraction, Fisher score feature selection, single-sample
classification and evidence accumulation for a two-class motor imagery BCI,
with a simulated online evaluation of recorded sessions.
"""

__version__ = "1.0.0"

# Main components for easy import
from .config import Config, ConfigError, MIPipelineError, NoDataError
from .data_io import load_csv, load_gdf, load_run
from .fake_data import synthesize_mi_runs
from .pipeline import analyze_subject, run_batch, run_subject

__all__ = [
    'Config', 'ConfigError', 'MIPipelineError', 'NoDataError',
    'load_csv', 'load_gdf', 'load_run', 'synthesize_mi_runs',
    'analyze_subject', 'run_batch', 'run_subject',
]
