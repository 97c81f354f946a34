"""STEPPE: individual-based model of plant community dynamics.

A plot-scale, yearly-timestep model coupling:
  - Resource partitioning among competing functional groups and individuals
  - Logistic growth modified by resource ratio (PR) and temperature
  - Stochastic establishment of perennials and seedbank dynamics of annuals
  - Age, growth-rate, succulent, disturbance and resource-stress mortality
  - Independent Monte Carlo iterations with reproducible random streams

References:
  - Coffin & Lauenroth 1990, Ecol. Modelling 49:229-266
"""

__version__ = "0.1.0"
