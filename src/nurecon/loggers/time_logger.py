from time import perf_counter

from loguru import logger


class TimeLogger:
    def __init__(self):
        """
        Log how long loading, reconstruction and saving take.
        """
        self.tstart = perf_counter()
        self.load_time_total = 0.0
        self.recon_time_total = 0.0
        self.save_time_total = 0.0
        self.total_time = 0.0
        self._t0 = {}

    def start(self, stage: str):
        self._t0[stage] = perf_counter()

    def end(self, stage: str):
        elapsed = perf_counter() - self._t0.pop(stage)
        attr = f"{stage}_time_total"
        setattr(self, attr, getattr(self, attr) + elapsed)

    def total_end(self):
        self.total_time = perf_counter() - self.tstart

    def report(self):
        self.total_end()
        overhead_time = self.total_time - (
            self.load_time_total + self.recon_time_total + self.save_time_total
        )

        logger.info("Time summary: ")
        logger.info(f"  Total: {self.total_time:.2f} s")
        logger.info(f"    Load: {self.load_time_total:.2f} s")
        logger.info(f"    Recon: {self.recon_time_total:.2f} s")
        logger.info(f"    Save: {self.save_time_total:.2f} s")
        logger.info(f"    Overheads: {overhead_time:.2f} s")
