"""
ARVIS Analysis Core
===================

Statistical building blocks shared by the study runners:

- correlation: inter-item correlation screening
- reliability: alpha, omega (single-factor and Schmid-Leiman)
- efa: factorability, parallel analysis, EFA fits, pruning
- cfa: CFA specifications, fits, comparisons, model choice
- validity: composite scores, correlation tables, Steiger's Z
- retest: retest pairing, Pearson r, intraclass correlations
"""

from .models import FactorModel, FitStatistics
from .correlation import (
    CorrelationScreen,
    inter_item_correlation,
    low_correlation_items,
    mean_inter_item_correlation,
    screen_inter_item_correlations,
)
from .reliability import (
    ReliabilityReport,
    compute_reliability,
    cronbach_alpha,
    interpret_alpha,
    item_total_statistics,
    omega_total_single_factor,
    schmid_leiman,
    standardized_alpha,
)
from .efa import (
    FactorCountDecision,
    ParallelAnalysisResult,
    SphericityResult,
    fit_efa,
    fit_efa_range,
    parallel_analysis,
    primary_factors,
    prune_cross_loadings,
    select_factor_count,
    select_top_loading_items,
    test_sphericity,
    top_loading_items,
)
from .cfa import (
    CFASpecification,
    FixDecision,
    LikelihoodRatioResult,
    ModelChoice,
    candidate_specifications,
    choose_model,
    compare_fit_indices,
    fit_cfa,
    fit_quality,
    likelihood_ratio_test,
    modification_indices,
    resolve_local_misfit,
)
from .validity import (
    ValidityComparison,
    composite_score,
    compare_overlapping_correlations,
    convergent_divergent_comparisons,
    correlation_table,
)
from .retest import (
    ICCResult,
    RetestPairs,
    icc_from_matrix,
    intraclass_correlation,
    join_by_id,
    pearson_retest,
    retest_icc_table,
)

__all__ = [
    'FactorModel', 'FitStatistics',
    'CorrelationScreen', 'inter_item_correlation', 'low_correlation_items',
    'mean_inter_item_correlation', 'screen_inter_item_correlations',
    'ReliabilityReport', 'compute_reliability', 'cronbach_alpha', 'interpret_alpha',
    'item_total_statistics', 'omega_total_single_factor', 'schmid_leiman', 'standardized_alpha',
    'FactorCountDecision', 'ParallelAnalysisResult', 'SphericityResult', 'fit_efa', 'fit_efa_range',
    'parallel_analysis', 'primary_factors', 'prune_cross_loadings', 'select_factor_count',
    'select_top_loading_items', 'test_sphericity', 'top_loading_items',
    'CFASpecification', 'FixDecision', 'LikelihoodRatioResult', 'ModelChoice',
    'candidate_specifications', 'choose_model', 'compare_fit_indices', 'fit_cfa', 'fit_quality',
    'likelihood_ratio_test', 'modification_indices', 'resolve_local_misfit',
    'ValidityComparison', 'composite_score', 'compare_overlapping_correlations',
    'convergent_divergent_comparisons', 'correlation_table',
    'ICCResult', 'RetestPairs', 'icc_from_matrix', 'intraclass_correlation', 'join_by_id',
    'pearson_retest', 'retest_icc_table',
]
