"""mobility_tables — Log-linear analysis of comparative social-mobility tables.

Fits conditional-independence, constant-association, quasi-symmetry,
unidiff (log-multiplicative layer effect), saturated and
Lasso-regularised Poisson models to origin × destination × country
tables, compares them by G², BIC and the index of dissimilarity, and
decomposes every model's log predictions into intercept, one- and
two-way margins and the margin-free log-odds-ratio association.  A
Bayesian multilevel model with a covariate-dependent group variance is
included for structured variance-component analysis.

Public API:
    .. autosummary::
        analyze_mobility_table
        decompose_margins
        decompose_models
        margin_free_table
        simulate_mobility_table
        validate_table
        compare_models
        likelihood_ratio_test
        cross_validate_alpha
        simulate_multilevel_data
        fit_structured_variance
        summarize_variance_components
        group_sd_curve
        plot_margin_free_heatmaps
        plot_lasso_path
        plot_group_sd_curve
        print_table_info_table
        print_model_comparison_table
        print_decomposition_table
        print_lasso_table
        print_variance_components_table
        get_output_dir
        set_output_dir
        get_random_seed
        set_random_seed
        ModelKind
        LoglinearModel
        ConditionalIndependenceModel
        ConstantAssociationModel
        QuasiSymmetryModel
        UnidiffModel
        SaturatedModel
        LassoModel
        resolve_model
        register_model
        MultilevelConfig
        ReferenceLevels
        MarginDecomposition
        LoglinearFit
        LassoPath
        MobilityAnalysis
"""

from ._config import get_output_dir, get_random_seed, set_output_dir, set_random_seed
from ._results import LassoPath, LoglinearFit, MobilityAnalysis
from .analysis import DEFAULT_MODELS, analyze_mobility_table
from .comparison import compare_models, likelihood_ratio_test
from .decomposition import (
    MarginDecomposition,
    ReferenceLevels,
    decompose_margins,
    decompose_models,
    margin_free_table,
)
from .display import (
    print_decomposition_table,
    print_lasso_table,
    print_model_comparison_table,
    print_table_info_table,
    print_variance_components_table,
)
from .models import (
    ConditionalIndependenceModel,
    ConstantAssociationModel,
    LoglinearModel,
    ModelKind,
    QuasiSymmetryModel,
    SaturatedModel,
    UnidiffModel,
    register_model,
    registered_models,
    resolve_model,
)
from .multilevel import (
    MultilevelConfig,
    fit_structured_variance,
    group_sd_curve,
    simulate_multilevel_data,
    summarize_variance_components,
)
from .penalized import LassoModel, cross_validate_alpha
from .plotting import plot_group_sd_curve, plot_lasso_path, plot_margin_free_heatmaps
from .tables import (
    DEFAULT_COUNTRIES,
    EGP_CLASSES,
    from_array,
    simulate_mobility_table,
    table_levels,
    to_array,
    validate_table,
)

__all__ = [
    "DEFAULT_COUNTRIES",
    "DEFAULT_MODELS",
    "EGP_CLASSES",
    "ConditionalIndependenceModel",
    "ConstantAssociationModel",
    "LassoModel",
    "LassoPath",
    "LoglinearFit",
    "LoglinearModel",
    "MarginDecomposition",
    "MobilityAnalysis",
    "ModelKind",
    "MultilevelConfig",
    "QuasiSymmetryModel",
    "ReferenceLevels",
    "SaturatedModel",
    "UnidiffModel",
    "analyze_mobility_table",
    "compare_models",
    "cross_validate_alpha",
    "decompose_margins",
    "decompose_models",
    "fit_structured_variance",
    "from_array",
    "get_output_dir",
    "get_random_seed",
    "group_sd_curve",
    "likelihood_ratio_test",
    "margin_free_table",
    "plot_group_sd_curve",
    "plot_lasso_path",
    "plot_margin_free_heatmaps",
    "print_decomposition_table",
    "print_lasso_table",
    "print_model_comparison_table",
    "print_table_info_table",
    "print_variance_components_table",
    "register_model",
    "registered_models",
    "resolve_model",
    "set_output_dir",
    "set_random_seed",
    "simulate_multilevel_data",
    "simulate_mobility_table",
    "summarize_variance_components",
    "table_levels",
    "to_array",
    "validate_table",
]

__version__ = "0.1.0"
