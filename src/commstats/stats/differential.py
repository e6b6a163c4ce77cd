"""
Differential abundance testing with a negative-binomial GLM.

For each taxon, read counts y_j in sample j are modelled as

    y_j ~ NB(mu_j, alpha),   Var(y_j) = mu_j + alpha mu_j²
    log(mu_j) = log(s_j) + beta_0 + beta_1 [sample j in test group]

where s_j is the sample's size factor (library-size offset) and alpha the
taxon's dispersion. beta_1 is the natural-log fold change of the test group
over the reference group; it is tested with a Wald z-test and reported on
the log2 scale.

Pipeline per taxon:
    1. Size factors by median-of-ratios (poscounts fallback)
    2. Dispersion by Cox-Reid adjusted profile likelihood, optionally shrunk
       toward a fitted mean-dispersion trend
    3. NB GLM fit (statsmodels) with fixed dispersion and log(s) offset
    4. Wald test; Benjamini-Hochberg across estimable taxa

Taxa that cannot be tested (all zero, identical counts everywhere, no
residual degrees of freedom, fit failure) get p_value NaN, an ``issue``
string and a Notice. They are excluded from the BH denominator.

References:
    - Love, Huber & Anders (2014) Genome Biology 15:550 (DESeq2)
    - McCarthy, Chen & Smyth (2012) NAR 40:4288-4297 (Cox-Reid dispersion)
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field, replace
from typing import Literal, Optional

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats as scipy_stats
from scipy.optimize import minimize_scalar
from scipy.special import gammaln, polygamma

from commstats.core.dataset import Dataset
from commstats.core.errors import DegenerateDesign
from commstats.core.notices import Notice, NoticeKind, emit
from commstats.stats.multiple_testing import fdr_correction
from commstats.stats.normalization import SizeFactorMethod, estimate_size_factors
from commstats.utils.parallel import run_tasks

logger = logging.getLogger(__name__)

__all__ = [
    "TaxonResult",
    "DifferentialAbundanceTable",
    "differential_abundance",
    "estimate_dispersion",
    "shrink_dispersions",
    "fit_nb_glm",
]

MIN_DISPERSION = 1e-8
MAX_DISPERSION = 1e3
PRIOR_VARIANCE_FLOOR = 0.25


@dataclass(frozen=True)
class TaxonResult:
    """Differential abundance result for a single taxon.

    Attributes:
        taxon_id: Taxon identifier
        base_mean: Mean of size-factor-normalized counts over tested samples
        log2_fold_change: log2(test / reference), the effect size
        lfc_se: Standard error of log2_fold_change
        wald_stat: Wald z statistic
        p_value: Two-sided p-value (NaN if not estimable)
        p_adjusted: BH-adjusted p-value (NaN if not estimable)
        dispersion: Dispersion used in the final fit
        issue: Why the taxon was not testable, if applicable
    """

    taxon_id: str
    base_mean: float
    log2_fold_change: float = np.nan
    lfc_se: float = np.nan
    wald_stat: float = np.nan
    p_value: float = np.nan
    p_adjusted: float = np.nan
    dispersion: float = np.nan
    issue: str | None = None

    def to_dict(self) -> dict:
        return {
            "taxon_id": self.taxon_id,
            "base_mean": self.base_mean,
            "log2_fold_change": self.log2_fold_change,
            "lfc_se": self.lfc_se,
            "wald_stat": self.wald_stat,
            "p_value": self.p_value,
            "p_adjusted": self.p_adjusted,
            "dispersion": self.dispersion,
            "issue": self.issue,
        }


@dataclass
class DifferentialAbundanceTable:
    """Complete differential abundance results.

    Attributes:
        results: Per-taxon results in dataset order
        group_column: Metadata column defining the groups
        contrast: (test_level, reference_level)
        size_factors: Size factor per tested sample
        size_factor_method: Estimator used for size factors
        dispersion_method: "gene" or "shrunk"
        fdr_threshold: Threshold used by ``significant_taxa``
        notices: Non-fatal conditions (zero-variance, non-estimable, fit failures)
    """

    results: list[TaxonResult]
    group_column: str
    contrast: tuple[str, str]
    size_factors: pd.Series
    size_factor_method: SizeFactorMethod
    dispersion_method: str = "gene"
    fdr_threshold: float = 0.05
    notices: tuple[Notice, ...] = field(default_factory=tuple)

    @property
    def contrast_name(self) -> str:
        return f"{self.contrast[0]}_vs_{self.contrast[1]}"

    def to_dataframe(self) -> pd.DataFrame:
        """One row per taxon with a ``significant`` column at ``fdr_threshold``."""
        df = pd.DataFrame(
            [r.to_dict() for r in self.results],
            columns=list(TaxonResult.__dataclass_fields__),
        )
        df["contrast"] = self.contrast_name
        df["significant"] = df["p_adjusted"] < self.fdr_threshold
        return df

    def significant_taxa(self) -> list[str]:
        df = self.to_dataframe()
        return df.loc[df["significant"], "taxon_id"].tolist()

    @property
    def skipped(self) -> list[str]:
        """Taxa that were not testable."""
        return [r.taxon_id for r in self.results if r.issue is not None]


def _nb_loglik(y: NDArray, mu: NDArray, alpha: float) -> float:
    r = 1.0 / alpha
    return float(np.sum(
        gammaln(y + r) - gammaln(r) - gammaln(y + 1.0)
        + r * np.log(r / (r + mu))
        + y * np.log(mu / (r + mu))
    ))


def _cox_reid_term(x: NDArray, mu: NDArray, alpha: float) -> float:
    w = mu / (1.0 + alpha * mu)
    _, logdet = np.linalg.slogdet(x.T @ (x * w[:, None]))
    return 0.5 * logdet


def estimate_dispersion(
    y: NDArray,
    size_factors: NDArray,
    x: NDArray,
) -> float:
    """
    Cox-Reid adjusted maximum-likelihood dispersion for one taxon.

    Means are fixed at the per-group average of normalized counts times the
    size factor; the adjusted profile log-likelihood is then maximized over
    log(alpha) in [log 1e-8, log 1e3].

    Args:
        y: Counts for one taxon (samples)
        size_factors: Size factor per sample
        x: Design matrix (samples × parameters), indicator coded

    Returns:
        Dispersion estimate
    """
    normalized = y / size_factors
    # Group membership from the unique rows of the design
    _, group_idx = np.unique(x, axis=0, return_inverse=True)
    group_idx = np.ravel(group_idx)
    group_means = np.array([normalized[group_idx == g].mean() for g in range(group_idx.max() + 1)])
    mu = np.maximum(size_factors * group_means[group_idx], 1e-10)

    def objective(log_alpha: float) -> float:
        alpha = np.exp(log_alpha)
        return -(_nb_loglik(y, mu, alpha) - _cox_reid_term(x, mu, alpha))

    res = minimize_scalar(
        objective,
        bounds=(np.log(MIN_DISPERSION), np.log(MAX_DISPERSION)),
        method="bounded",
    )
    return float(np.exp(res.x))


def shrink_dispersions(
    gene_wise: NDArray,
    base_means: NDArray,
    n_samples: int,
    n_params: int,
) -> NDArray:
    """
    Shrink gene-wise dispersions toward a mean-dispersion trend.

    The trend alpha(mu) = a0 + a1 / mu is fitted with a Gamma GLM (identity
    link). Log-dispersions are combined with the trend by precision
    weighting: the sampling variance of a log-dispersion estimate is
    trigamma((m - p) / 2) and the prior variance is the excess residual
    variance around the trend, floored at 0.25. Taxa more than two residual
    SDs above the trend keep their gene-wise value.

    Args:
        gene_wise: Gene-wise dispersions (NaN for non-estimable taxa)
        base_means: Mean normalized count per taxon
        n_samples: Samples in the design (m)
        n_params: Design columns (p)

    Returns:
        Shrunk dispersions, NaN where the input was NaN
    """
    import statsmodels.api as sm

    out = np.array(gene_wise, dtype=np.float64)
    usable = (
        np.isfinite(gene_wise)
        & (gene_wise > 100 * MIN_DISPERSION)
        & (base_means > 0)
    )
    if usable.sum() < 3:
        logger.warning(
            f"Only {int(usable.sum())} taxa usable for the dispersion trend; "
            "keeping gene-wise dispersions"
        )
        return out

    design = sm.add_constant(1.0 / base_means[usable])
    try:
        with warnings.catch_warnings():
            # Identity link on Gamma raises a DomainWarning by default
            warnings.simplefilter("ignore")
            fit = sm.GLM(
                gene_wise[usable],
                design,
                family=sm.families.Gamma(link=sm.families.links.Identity()),
            ).fit()
        a0, a1 = fit.params
    except (ValueError, np.linalg.LinAlgError) as e:
        logger.warning(f"Dispersion trend fit failed ({e}); keeping gene-wise dispersions")
        return out

    if not (a0 > 0 and a1 >= 0):
        logger.warning(
            f"Dispersion trend coefficients not positive (a0={a0:.3g}, a1={a1:.3g}); "
            "keeping gene-wise dispersions"
        )
        return out

    finite = np.isfinite(gene_wise) & (base_means > 0)
    trend = a0 + a1 / base_means[finite]
    log_gw = np.log(np.maximum(gene_wise[finite], MIN_DISPERSION))
    log_trend = np.log(trend)

    resid = log_gw[usable[finite]] - log_trend[usable[finite]]
    resid_var = (scipy_stats.median_abs_deviation(resid, scale="normal")) ** 2
    df = max(n_samples - n_params, 1)
    sampling_var = float(polygamma(1, df / 2.0))
    prior_var = max(resid_var - sampling_var, PRIOR_VARIANCE_FLOOR)

    w_data = 1.0 / sampling_var
    w_prior = 1.0 / prior_var
    log_map = (w_data * log_gw + w_prior * log_trend) / (w_data + w_prior)

    outlier = log_gw > log_trend + 2.0 * np.sqrt(resid_var)
    shrunk = np.where(outlier, log_gw, log_map)
    out[finite] = np.clip(np.exp(shrunk), MIN_DISPERSION, MAX_DISPERSION)

    logger.info(
        f"Dispersion trend a0={a0:.4g}, a1={a1:.4g}; prior variance {prior_var:.3f}, "
        f"{int(outlier.sum())} outliers kept gene-wise"
    )
    return out


def fit_nb_glm(
    y: NDArray,
    x: NDArray,
    size_factors: NDArray,
    alpha: float,
) -> tuple[float, float]:
    """
    Fit the NB GLM with fixed dispersion and return (beta_1, se(beta_1)).

    Raises whatever statsmodels raises on a failed fit; non-finite estimates
    raise ValueError.
    """
    import statsmodels.api as sm

    model = sm.GLM(
        y,
        x,
        family=sm.families.NegativeBinomial(alpha=alpha),
        offset=np.log(size_factors),
    )
    with warnings.catch_warnings():
        # Separation (a group with all zeros) is reported via the large SE
        warnings.simplefilter("ignore")
        result = model.fit()

    beta = float(result.params[1])
    se = float(result.bse[1])
    if not (np.isfinite(beta) and np.isfinite(se) and se > 0):
        raise ValueError(f"non-finite estimate (beta={beta}, se={se})")
    return beta, se


def _resolve_contrast(
    labels: pd.Series,
    group_column: str,
    contrast: Optional[tuple[str, str]],
) -> tuple[str, str]:
    levels = sorted(labels.dropna().unique())
    if len(levels) < 2:
        raise DegenerateDesign(
            f"{group_column!r} needs at least 2 levels with samples, got {levels}"
        )
    if contrast is None:
        if len(levels) > 2:
            raise DegenerateDesign(
                f"{group_column!r} has {len(levels)} levels {levels}; "
                "pass contrast=(test, reference)"
            )
        return levels[1], levels[0]

    test, reference = (str(c) for c in contrast)
    if test == reference:
        raise DegenerateDesign(f"contrast levels must differ, got {test!r} twice")
    for level in (test, reference):
        if level not in levels:
            raise DegenerateDesign(
                f"contrast level {level!r} has no samples in {group_column!r} (levels {levels})"
            )
    return test, reference


def differential_abundance(
    dataset: Dataset,
    group_column: str,
    contrast: Optional[tuple[str, str]] = None,
    dispersion: Literal["gene", "shrunk"] = "gene",
    n_jobs: int = 1,
    alpha: float = 0.05,
) -> DifferentialAbundanceTable:
    """
    Negative-binomial GLM differential abundance between two groups.

    Args:
        dataset: Input Dataset of raw (unrarefied) counts, usually aggregated
        group_column: Sample metadata column with group labels
        contrast: (test_level, reference_level); default for a two-level
            column is (second, first) in sorted order
        dispersion: "gene" for per-taxon estimates, "shrunk" to shrink toward
            the mean-dispersion trend
        n_jobs: Worker threads, one task per taxon
        alpha: FDR threshold for the ``significant`` column

    Returns:
        DifferentialAbundanceTable

    Raises:
        KeyError: If ``group_column`` is not in the sample metadata
        DegenerateDesign: If fewer than two levels have samples, more than two
            levels exist without a contrast, or a contrast level is absent
        EmptySample: If a tested sample has a total count of zero
        ValueError: If ``dispersion`` is unknown

    Examples:
        >>> genus = ds.aggregate_to("Genus")
        >>> table = differential_abundance(genus, "group", contrast=("case", "control"))
        >>> table.to_dataframe().sort_values("p_adjusted").head()
    """
    if dispersion not in ("gene", "shrunk"):
        raise ValueError(f"dispersion must be 'gene' or 'shrunk', got {dispersion!r}")

    metadata = dataset.sample_metadata
    if group_column not in metadata.columns:
        raise KeyError(f"Group column {group_column!r} not in sample metadata")

    raw = metadata[group_column]
    labels = raw.astype(str).where(raw.notna())
    test, reference = _resolve_contrast(labels, group_column, contrast)

    keep = labels.isin([test, reference]).to_numpy()
    n_excluded = int((~keep).sum())
    if n_excluded:
        logger.info(f"Excluding {n_excluded} samples outside {test!r}/{reference!r} or unlabelled")

    counts = dataset.data[keep].astype(np.float64)
    sample_ids = dataset.sample_ids[keep]
    is_test = (labels[keep] == test).to_numpy().astype(np.float64)
    x = np.column_stack([np.ones_like(is_test), is_test])
    m, p = x.shape

    sf = estimate_size_factors(counts, sample_ids)
    size_factors = sf.factors
    normalized = counts / size_factors[:, None]
    base_means = normalized.mean(axis=0)

    logger.info(
        f"Differential abundance: {dataset.n_taxa} taxa, {m} samples "
        f"({int(is_test.sum())} {test!r} vs {int(m - is_test.sum())} {reference!r}), "
        f"size factors by {sf.method.value}"
    )

    taxon_ids = [str(t) for t in dataset.taxon_ids]
    notices: list[Notice] = []
    issues: dict[int, tuple[NoticeKind, str]] = {}

    for i in range(dataset.n_taxa):
        column = counts[:, i]
        if not column.any():
            issues[i] = (NoticeKind.NON_ESTIMABLE_DISPERSION, "all counts zero")
        elif np.all(column == column[0]):
            issues[i] = (NoticeKind.ZERO_VARIANCE_TAXON, "identical counts in every sample")
        elif m - p < 1:
            issues[i] = (NoticeKind.NON_ESTIMABLE_DISPERSION, "no residual degrees of freedom")

    testable = [i for i in range(dataset.n_taxa) if i not in issues]

    gene_wise = np.full(dataset.n_taxa, np.nan)
    disp_values = run_tasks(
        lambda i: estimate_dispersion(counts[:, i], size_factors, x),
        testable,
        n_jobs=n_jobs,
    )
    gene_wise[testable] = disp_values

    if dispersion == "shrunk":
        final_disp = shrink_dispersions(gene_wise, base_means, m, p)
    else:
        final_disp = gene_wise

    def fit_one(i: int):
        try:
            return fit_nb_glm(counts[:, i], x, size_factors, float(final_disp[i]))
        except Exception as e:
            return f"GLM fit failed: {type(e).__name__}: {e}"

    fits = dict(zip(testable, run_tasks(fit_one, testable, n_jobs=n_jobs)))

    results = []
    for i in range(dataset.n_taxa):
        if i in issues:
            kind, issue = issues[i]
            notices.append(Notice(kind, taxon_ids[i], issue))
            results.append(TaxonResult(taxon_ids[i], float(base_means[i]), issue=issue))
            continue

        fit = fits[i]
        if isinstance(fit, str):
            notices.append(Notice(NoticeKind.FIT_FAILURE, taxon_ids[i], fit))
            results.append(
                TaxonResult(taxon_ids[i], float(base_means[i]), dispersion=float(final_disp[i]), issue=fit)
            )
            continue

        beta, se = fit
        z = beta / se
        results.append(TaxonResult(
            taxon_id=taxon_ids[i],
            base_mean=float(base_means[i]),
            log2_fold_change=beta / np.log(2.0),
            lfc_se=se / np.log(2.0),
            wald_stat=z,
            p_value=float(2.0 * scipy_stats.norm.sf(abs(z))),
            dispersion=float(final_disp[i]),
        ))

    adjusted = fdr_correction(np.array([r.p_value for r in results]), method="BH")
    results = [replace(r, p_adjusted=float(a)) for r, a in zip(results, adjusted)]

    zero_var = [n for n in notices if n.kind is NoticeKind.ZERO_VARIANCE_TAXON]
    emit(zero_var, f"{len(zero_var)} taxa have identical counts in every sample and were not tested")
    other = [n for n in notices if n.kind is not NoticeKind.ZERO_VARIANCE_TAXON]
    if other:
        logger.warning(f"{len(other)} taxa not estimable (see notices)")

    return DifferentialAbundanceTable(
        results=results,
        group_column=group_column,
        contrast=(test, reference),
        size_factors=sf.to_series(sample_ids),
        size_factor_method=sf.method,
        dispersion_method=dispersion,
        fdr_threshold=alpha,
        notices=tuple(notices),
    )
