#!/usr/bin/env python3
"""
Session Demo: Definition → Session → Answers → Validation → Response

Shows the full workflow:
1. Start a session over the household form
2. Answer questions and add repeating-group instances
3. Inspect enablement, calculated answers and validation results
4. Submit and export the response document
"""

from formstate import FormSession
from formstate.examples import build_household_form
from formstate.serialization import response_to_yaml
from formstate.validation import Invalid


def print_invalid(results):
    invalid = [(key, result) for key, result in results.items() if isinstance(result, Invalid)]
    if not invalid:
        print("   ✓ Everything valid")
    for key, result in invalid:
        print(f"   ✗ {key}: {'; '.join(result.messages)}")


def main():
    form = build_household_form()

    print("=" * 80)
    print("SESSION DEMO: household form")
    print("=" * 80)

    # =========================================================================
    # STEP 1: Start
    # =========================================================================
    print("\n1. STARTING SESSION...")
    session = FormSession(form)
    session.on_event(lambda event, results: print(f"   → event: {event.value}"))
    print(f"   ✓ Mode: {session.mode.value}, page {session.page} of {len(form.pages())}")
    print_invalid(session.snapshot.validation)

    # =========================================================================
    # STEP 2: Answer
    # =========================================================================
    print("\n2. ANSWERING...")
    session.set_answer("personal/name", "Ada")
    session.set_answer("personal/hasAddress", True)
    print(f"   ✓ Address enabled: {session.is_enabled('personal/address')}")

    session.set_answer("personal/address/street", "1 Main Street")
    session.next_page()
    for name, age in (("Ada", 36), ("Ben", 9)):
        index = session.add_repeated_instance("household/members")
        session.set_answer(f"household/members[{index}]/memberName", name)
        session.set_answer(f"household/members[{index}]/age", age)

    # =========================================================================
    # STEP 3: Inspect
    # =========================================================================
    print("\n3. STATE AFTER ANSWERS:")
    print(f"   ✓ Household size (calculated): {session.answers('household/householdSize')}")
    for i in range(2):
        print(f"   ✓ members[{i}] guardian enabled: {session.is_enabled(f'household/members[{i}]/guardian')}")
    print_invalid(session.validate_all())

    # =========================================================================
    # STEP 4: Submit
    # =========================================================================
    print("\n4. SUBMITTING...")
    submitted = session.submit()
    print(f"   ✓ Submitted: {submitted} (status {session.status})")
    if not submitted:
        session.set_answer("household/members[1]/guardian", "Ada")
        print(f"   ✓ Submitted after adding a guardian name: {session.submit()}")

    print("\n5. RESPONSE DOCUMENT:")
    print("-" * 80)
    print(response_to_yaml(session.get_response(), form))
    print("=" * 80)


if __name__ == "__main__":
    main()
