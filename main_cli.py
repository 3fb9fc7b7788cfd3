# main_cli.py
from config import setup_logging
from errors import ModelError, ModelUnavailable
from scenarios import SCENARIOS, init_session_state
from state import SessionState
from workflow import TrainingWorkflow


def choose_scenario() -> str:
    scenario_ids = list(SCENARIOS)
    print("Choose a training scenario:")
    for i, scenario_id in enumerate(scenario_ids, start=1):
        print(f"{i}) {SCENARIOS[scenario_id]['scenario']['scenario_title']}")

    while True:
        choice = input(f"Enter 1-{len(scenario_ids)}: ").strip()
        if choice.isdigit() and 1 <= int(choice) <= len(scenario_ids):
            return scenario_ids[int(choice) - 1]
        print("Invalid choice, try again.")


def print_feedback(session: SessionState) -> None:
    feedback = session.feedback
    if feedback is None:
        return
    print("\n=== Session Feedback ===")
    print(feedback.summary or "(Summary unavailable.)")
    print("Overall:", feedback.overall_assessment)
    if feedback.strengths:
        print("Strengths:")
        for item in feedback.strengths:
            print("  +", item)
    if feedback.weaknesses:
        print("Weaknesses:")
        for item in feedback.weaknesses:
            print("  -", item)
    if feedback.suggestions:
        print("Work on:")
        for item in feedback.suggestions:
            print("  *", item)


def run_cli_simulation():
    setup_logging("WARNING")
    workflow = TrainingWorkflow.from_config()

    scenario_id = choose_scenario()
    session = init_session_state(scenario_id)
    scenario = session.scenario

    print("\n=== Guest Support Training Simulation ===")
    print("Scenario:           ", scenario.scenario_title)
    print("Guest:              ", session.persona.name)
    print("Difficulty:         ", scenario.difficulty_level)
    print("Context:            ", scenario.business_context)
    print("Max turns:          ", scenario.completion.max_trainee_turns)
    print("=========================================\n")

    if session.conversation:
        print(f"[{session.persona.name}]:", session.conversation[-1].content)
        print()

    print(" You are the virtual assistant. Type your responses below.\n")

    while session.status == "active":
        user_text = input("Your reply (or 'quit'): ").strip()
        if not user_text:
            continue

        try:
            if user_text.lower() in {"quit", "exit"}:
                session = workflow.end_session(session)
                print("Simulation ended by user.")
                break
            session = workflow.run_turn(session, trainee_message=user_text)
        except ModelUnavailable as e:
            print(f"(Model unavailable, try again: {e})")
            continue
        except ModelError as e:
            print(f"(Model error: {e})")
            continue

        trainee_turn = next(t for t in reversed(session.conversation) if t.speaker == "trainee")

        print("\n----------------------")
        if session.conversation[-1].speaker == "guest":
            print(f"[{session.persona.name}]:", session.conversation[-1].content)

        if trainee_turn.rating is not None:
            print(f"\n[Rating]: {trainee_turn.rating}/5 - {trainee_turn.rating_reason}")
            for suggestion in trainee_turn.suggestions:
                print("  tip:", suggestion)
        else:
            print("\n[Rating]: unavailable")
        print("----------------------\n")

    print_feedback(session)

    # ---- End-of-session assessment ----
    print("\n=== Session Assessment ===")
    try:
        print(workflow.assess_session(session))
    except (ModelUnavailable, ModelError) as e:
        print(f"(Assessment generation failed: {e})")

    print("\n CLI simulation complete.")


if __name__ == "__main__":
    run_cli_simulation()
