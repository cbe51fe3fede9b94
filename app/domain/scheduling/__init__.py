"""
Scheduling domain: appointment booking, conflict detection, the slot grid,
consultation-driven auto-booking and the appointment/consultation status
workflow.

Layout:
    time_calculator.py       civil-time and interval arithmetic
    slots.py                 grid slots and slot spans
    repository.py            tenant-scoped queries
    availability_service.py  overlap checks (read-only)
    booking_service.py       booking, rescheduling, consultation fan-out
    status_service.py        status workflow and appointment/consultation sync
    router_appointments.py   /appointments endpoints
    router_consultations.py  /consultations endpoints
"""
