"""Daily/weekly activity checklist: detection, boundary resets, persistence."""
