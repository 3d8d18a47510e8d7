"""
Medication dispensing workflow engine.

generator      - expands prescriptions into dated/timed occurrences, once a day
inspection     - vital-sign rules that can veto dispensing
state_machine  - prepare -> verify -> dispense, with revert
batch          - one failure reason across a patient's whole time slot
queries        - filtered reads and overdue summaries for the UI
"""
