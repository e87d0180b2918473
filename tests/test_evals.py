from evals.run_eval import EVAL_QUERIES, build_cases, contains_links


def test_contains_links_scores_markdown_citations():
    assert contains_links("See [TypeScript 5.8](https://devblogs.test/ts58).") == 1.0
    assert contains_links("See https://devblogs.test/ts58") == 0.0
    assert contains_links("[broken link]") == 0.0


def test_cases_are_single_user_messages_with_stable_ids():
    cases = build_cases()

    assert [case_id for case_id, _ in cases] == [str(i) for i in range(1, len(EVAL_QUERIES) + 1)]
    assert all(len(messages) == 1 and messages[0].role == "user" for _, messages in cases)
    assert cases[0][1][0].text == "What is the latest version of TypeScript?"
