from typing import Dict, Iterable, List

from bookstore.domain.models import Capability, DeliveryCandidate, Employee, Order

# Keeps every region match ahead of any mismatch in the informational score
REGION_MISMATCH_PENALTY = 1_000_000


def rank_delivery_candidates(
    order: Order,
    employees: Iterable[Employee],
    active_deliveries: Dict[int, int],
) -> List[DeliveryCandidate]:
    """Couriers for an order, best first.

    Region matches rank above mismatches, then fewer deliveries in flight,
    then the lowest employee id.
    """
    candidates = []
    for employee in employees:
        if not employee.can(Capability.DELIVER_ORDERS):
            continue
        region_match = employee.serves(order.shipping_address)
        load = active_deliveries.get(employee.id, 0)
        candidates.append(
            DeliveryCandidate(
                employee_id=employee.id,
                name=employee.full_name,
                active_delivery_count=load,
                region_match=region_match,
                score=(0 if region_match else REGION_MISMATCH_PENALTY) + load,
                area_names=[area.name for area in employee.areas if area.active],
            )
        )

    return sorted(
        candidates,
        key=lambda c: (not c.region_match, c.active_delivery_count, c.employee_id),
    )
