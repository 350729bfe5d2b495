"""srdrive: Deterministic model of X-linked meiotic drive under polyandry.

An infinite-population, discrete-generation recursion for an X-linked
segregation distorter ("sex ratio", SR) coupling:
  - Segregation distortion in SR males (strength k)
  - Female remating and sperm competition between ST and SR males
  - Genotype-specific viability costs of SR carriers
  - Chunked, resumable parameter sweeps over the model's parameter space
"""

__version__ = "0.1.0"
