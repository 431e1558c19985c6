"""
Service layer

Pure logic and external collaborators; no state transitions here:
- TriggerService: readiness predicate
- SelectionService: winner selection
- RandomnessService: oracle client
- PayoutService: winner transfer
- EventService: emitted notifications
"""
