"""HTTP admin API: health, status, metrics, player and wallet management, profiling."""