"""
ARVIS Analysis Suite
====================

Registry and runner for the three studies. Results of earlier studies are
handed to later ones through a shared context; a study run on its own reads
the final item list written by the previous study instead.

Usage:
    python -m arvis                 # all studies in order
    python -m arvis -a study2       # one study
    python -m arvis --list
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .config import PipelineConfig
from .studies import run_study1, run_study2, run_study3
from .studies._utils import FINAL_ITEMS_FILE, find_study_items, load_final_items


# =============================================================================
# ANALYSIS REGISTRY
# =============================================================================

@dataclass
class AnalysisSpec:
    """Specification for an analysis."""
    name: str
    description: str
    function: Callable


ANALYSES: Dict[str, AnalysisSpec] = {}
ANALYSIS_ORDER = ('study1', 'study2', 'study3')


def register_analysis(name: str, description: str):
    """Decorator to register an analysis function."""
    def decorator(func: Callable):
        ANALYSES[name] = AnalysisSpec(name=name, description=description, function=func)
        return func
    return decorator


# =============================================================================
# ANALYSES
# =============================================================================

@register_analysis(
    name="study1",
    description="Item reduction: screening, EFA, pruning (writes final_items.json)"
)
def analyze_study1(config: PipelineConfig, context: Dict, verbose: bool = True):
    result = run_study1(config, verbose=verbose)
    context['items'] = result.items
    context['factor_map'] = result.factor_map
    return result


@register_analysis(
    name="study2",
    description="CFA model comparison, reliability and validity on the second sample"
)
def analyze_study2(config: PipelineConfig, context: Dict, verbose: bool = True):
    if 'items' not in context:
        path = config.output_dir / "study1" / FINAL_ITEMS_FILE
        context['items'], context['factor_map'] = load_final_items(path)
        if verbose:
            print(f"  [INFO] items loaded from {path}")

    result = run_study2(context['items'], context['factor_map'], config, verbose=verbose)
    context['items'] = result.items
    context['factor_map'] = result.factor_map
    context['time1_scores'] = result.composite
    return result


@register_analysis(
    name="study3",
    description="Test-retest: Pearson r and ICC (agreement, consistency)"
)
def analyze_study3(config: PipelineConfig, context: Dict, verbose: bool = True):
    if 'items' not in context:
        path = find_study_items(config.output_dir)
        if path is None:
            raise FileNotFoundError(f"No {FINAL_ITEMS_FILE} under {config.output_dir}; run study1 first")
        context['items'], context['factor_map'] = load_final_items(path)
        if verbose:
            print(f"  [INFO] items loaded from {path}")

    return run_study3(context['items'], context.get('time1_scores'), config, verbose=verbose)


# =============================================================================
# MAIN RUNNER
# =============================================================================

def run(analysis: Optional[str] = None, config: Optional[PipelineConfig] = None, verbose: bool = True) -> Dict:
    """Run one registered analysis, or all of them in order."""
    config = config or PipelineConfig()
    if verbose:
        print("=" * 70)
        print("ARVIS SCALE DEVELOPMENT SUITE")
        print("=" * 70)

    results = {}
    context: Dict = {}

    if analysis:
        if analysis not in ANALYSES:
            raise ValueError(f"Unknown analysis: {analysis}. Available: {list(ANALYSES.keys())}")
        spec = ANALYSES[analysis]
        if verbose:
            print(f"\nRunning: {spec.name}")
        results[analysis] = spec.function(config, context, verbose=verbose)
    else:
        for name in ANALYSIS_ORDER:
            try:
                results[name] = ANALYSES[name].function(config, context, verbose=verbose)
            except Exception as e:
                print(f"  ERROR in {name}: {e}")
                break

    if verbose:
        print("\n" + "=" * 70)
        print("ARVIS SUITE COMPLETE")
        print(f"Output directory: {config.output_dir}")
        print("=" * 70)

    return results


def list_analyses():
    """List available analyses."""
    print("\nAvailable ARVIS Analyses:")
    print("-" * 60)
    for name, spec in ANALYSES.items():
        print(f"  {name}")
        print(f"    {spec.description}")
