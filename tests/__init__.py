"""Test package for the CPT engine.

Core tests drive the engine on a ManualClock so no test ever sleeps. The
pygame smoke test uses SDL's dummy drivers. Run ``pytest`` from the project
root.
"""
