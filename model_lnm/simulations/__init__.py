from .survival_simulator import SurvivalData, simulate_survival_data, simulate_y

__all__ = ["SurvivalData", "simulate_survival_data", "simulate_y"]
