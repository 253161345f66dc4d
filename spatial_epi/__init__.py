"""
Spatial epi is a branching-process model of an infectious disease spreading across a network of locales, written to
compare alert-level policies that respond to the test positivity observed in each locale.

The main entrypoint for a single run is :meth:`spatial_epi.simulation.basicSimulation`, which takes a
`LocaleModel` built by :meth:`spatial_epi.simulation.createLocaleModel`. Experiments with many trials are run from
the command line through `spatial_epi.experiment`.
"""
__version__ = "0.1.0"
