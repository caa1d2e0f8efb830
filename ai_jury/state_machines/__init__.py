from ai_jury.state_machines.jury_session_state import JurySessionStateMachine, status_for_layer

__all__ = ["JurySessionStateMachine", "status_for_layer"]
