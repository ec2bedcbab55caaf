import numpy as np
import pandas as pd
from biocframe import BiocFrame
from summarizedexperiment import SummarizedExperiment

import deferential_sva as ds

# --- toy log-expression matrix (genes x samples) with a hidden batch ---
genes = [f"gene{i+1}" for i in range(500)]
samples = [f"S{i+1:02d}" for i in range(12)]
rng = np.random.default_rng(1)

cond = np.array(["A", "B"] * 6)
batch = np.array([1.0] * 6 + [-1.0] * 6)
log_expr = rng.normal(size=(len(genes), len(samples)))
log_expr[:50] += 3 * batch
log_expr[50:100] += 2 * (cond == "B")

se = SummarizedExperiment(
    assays={"log_expr": log_expr},
    row_names=genes,
    column_names=samples,
    column_data=BiocFrame({"condition": cond}),
)

design = pd.DataFrame(
    {"Intercept": 1.0, "condB": (cond == "B").astype(float)},
    index=samples,
)

# Matrix API with per-iteration progress
res = ds.sva.irwsva_build(
    log_expr, design, n_sv=1, B=5,
    callback=lambda i, state: print(f"iteration {i}"),
)
print(res.to_frame(samples).head())
print("corr with batch:", np.corrcoef(res.surrogate_variables[:, 0], batch)[0, 1])

# SummarizedExperiment API, n_sv estimated by permutation
se_sva = ds.sva.sva(se, mod=design, assay="log_expr", seed=1)
print(ds.sva.get_sv(se_sva))

# Surrogate variables join the design for downstream testing
design_sv = pd.concat([design, ds.sva.get_sv(se_sva)], axis=1)
print(design_sv.head())
