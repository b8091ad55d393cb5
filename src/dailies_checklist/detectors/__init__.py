"""
Detectors infer task completion from host session events.

- base.py: counters, dedupe window, subscription bookkeeping
- orchestrator.py: registry, failure isolation, fan-out
- roulette.py / cactpot.py / beast_tribe.py: one detector per activity family
"""
