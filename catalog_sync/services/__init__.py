# Services layer for matching and run bookkeeping
