from schemas.results import PlanLimits


class BusinessRules:
    FREE_VEHICLE_LIMIT = 3

    @staticmethod
    def plan_limits(is_pro: bool, vehicle_count: int) -> PlanLimits:
        """Pro plans have no vehicle ceiling; free plans stop at FREE_VEHICLE_LIMIT."""
        if vehicle_count < 0:
            raise ValueError("vehicle_count cannot be negative.")
        return PlanLimits(
            is_pro=is_pro,
            vehicle_count=vehicle_count,
            vehicle_limit=None if is_pro else BusinessRules.FREE_VEHICLE_LIMIT,
        )
