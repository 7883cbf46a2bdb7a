import pytest

from issueoperator.errors import TransportError
from issueoperator.fake_client import FakeIssueClient
from issueoperator.issue_client import IssueClient
from issueoperator.models import Issue, IssueDraft


def test_satisfies_protocol():
    assert isinstance(FakeIssueClient(), IssueClient)


def test_create_assigns_sequential_numbers_after_seeded_issues():
    client = FakeIssueClient([Issue(title="seed", number=5)])

    first = client.create(IssueDraft(title="a", description="x"))
    second = client.create(IssueDraft(title="b"))

    assert (first.number, second.number) == (6, 7)
    assert first.state == "open"
    assert first.last_update_timestamp == "2021-01-01T00:00:01Z"
    assert second.last_update_timestamp == "2021-01-01T00:00:02Z"


def test_find_is_exact_and_returns_copies():
    client = FakeIssueClient()
    client.create(IssueDraft(title="Demo", description="x"))

    found = client.find("Demo")
    assert found is not None
    found.description = "mutated"

    assert client.find("demo") is None
    assert client.get(found.number).description == "x"


def test_edit_updates_body_and_timestamp():
    client = FakeIssueClient()
    issue = client.create(IssueDraft(title="Demo", description="x"))

    returned = client.edit(issue.number, "y")

    updated = client.get(issue.number)
    assert returned == updated
    assert updated.description == "y"
    assert updated.last_update_timestamp > issue.last_update_timestamp


def test_close_is_idempotent():
    client = FakeIssueClient()
    issue = client.create(IssueDraft(title="Demo"))

    client.close(issue.number)
    closed_at = client.get(issue.number).last_update_timestamp
    client.close(issue.number)

    closed = client.get(issue.number)
    assert closed.state == "closed"
    assert closed.last_update_timestamp == closed_at
    assert len(client.issues) == 1


def test_unknown_issue_number_raises_404():
    client = FakeIssueClient()

    with pytest.raises(TransportError) as excinfo:
        client.close(99)
    assert excinfo.value.status == 404

    with pytest.raises(TransportError):
        client.edit(99, "body")


def test_injected_failure_is_recorded_and_recoverable():
    client = FakeIssueClient()
    client.fail("create", TransportError("tracker down", status=503))

    with pytest.raises(TransportError, match="tracker down"):
        client.create(IssueDraft(title="Demo"))
    assert client.issues == []
    assert client.count("create") == 1

    client.recover("create")
    client.create(IssueDraft(title="Demo"))

    assert client.count("create") == 2
    assert [name for name, _ in client.mutating_calls] == ["create", "create"]
