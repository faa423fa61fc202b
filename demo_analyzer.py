"""
Demo: Run the analyzer on the example forms and output the reports.
"""

from formstate.examples import build_household_form, build_triage_form
from formstate.analyzer import analyze_form
from formstate.serialization import form_to_yaml


def print_report(report):
    """Pretty-print a FormReport."""
    print()
    print("=" * 70)
    print(f"FORM ANALYSIS REPORT: {report.form_name}")
    print("=" * 70)
    print()

    print("📊 BASIC METRICS")
    print(f"  Total Items:           {report.total_items}")
    print(f"  Questions:             {report.total_questions}")
    print(f"  Groups:                {report.total_groups}")
    print(f"  Pages:                 {report.total_pages}")
    print(f"  Expressions:           {report.total_expressions}")
    for kind, count in sorted(report.expressions_by_kind.items()):
        print(f"    {kind}: {count}")
    print()

    print("📈 VARIABLE ANALYSIS")
    print(f"  Variables Declared:    {report.total_variables}")
    print(f"  Undefined References:  {len(report.undefined_references)}")
    if report.undefined_references:
        print(f"    {sorted(report.undefined_references)}")
    print(f"  Unused Variables:      {len(report.unused_variables)}")
    if report.unused_variables:
        print(f"    {sorted(report.unused_variables)}")
    print()

    if report.variable_usage:
        print("  Variable Usage:")
        for var, count in sorted(report.variable_usage.items()):
            print(f"    %{var}: {count} reader(s)")
        print()

    print("🔗 DEPENDENCY GRAPH")
    print(f"  Has Cycles:            {'YES' if report.has_cycles else 'NO'}")
    for cycle in report.cycles:
        print(f"    {' -> '.join(cycle)}")
    print()

    print("📐 EXPRESSION COMPLEXITY")
    print(f"  Max Expression Depth:  {report.max_expression_depth}")
    print(f"  Avg Expression Depth:  {report.avg_expression_depth:.2f}")
    print(f"  Total Expression Nodes:{report.total_expression_nodes}")
    print()

    print("✅ COVERAGE METRICS")
    print(f"  Required Items:        {report.required_items}/{report.total_items}")
    print(f"  Items with Constraints:{report.items_with_constraints}/{report.total_items}")
    print()

    if report.warnings:
        print("⚠️  WARNINGS")
        for i, warning in enumerate(report.warnings, 1):
            print(f"  {i}. {warning}")
    else:
        print("✨ NO WARNINGS - Form looks clean!")
    print()


if __name__ == "__main__":
    for form in (build_household_form(), build_triage_form()):
        print_report(analyze_form(form))

    # Also save to YAML for inspection
    form = build_household_form()
    with open("household_form_output.yaml", "w") as f:
        f.write(form_to_yaml(form))
    print("✅ Form exported to household_form_output.yaml")
