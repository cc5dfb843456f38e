"""
Tests for review tallies, conflict detection and comment updates.
"""

from lockstep_pr.comments import append_to_comment, find_comment
from lockstep_pr.inspector import COMPARE_FILE_LIMIT, detect_conflicts, get_approval_counts

from conftest import OWNER, REPO


def _review(user, state, when):
    return {"user": {"login": user}, "state": state, "submitted_at": when}


class TestApprovalCounts:
    def test_latest_verdict_per_reviewer(self, fake_github):
        fake_github.reviews[(OWNER, REPO, 1)] = [
            _review("alice", "APPROVED", "2024-01-01T10:00:00Z"),
            _review("alice", "CHANGES_REQUESTED", "2024-01-02T10:00:00Z"),
        ]

        summary = get_approval_counts(fake_github, OWNER, REPO, 1)

        assert summary.as_dict() == {"approvalCount": 0, "changeRequestCount": 1}

    def test_reviews_are_ordered_by_submission_time(self, fake_github):
        fake_github.reviews[(OWNER, REPO, 1)] = [
            _review("bob", "APPROVED", "2024-01-03T10:00:00Z"),
            _review("bob", "CHANGES_REQUESTED", "2024-01-02T10:00:00Z"),
            _review("carol", "APPROVED", "2024-01-01T10:00:00Z"),
        ]

        summary = get_approval_counts(fake_github, OWNER, REPO, 1)

        assert (summary.approval_count, summary.change_request_count) == (2, 0)

    def test_comments_do_not_replace_verdict_and_dismissal_clears(self, fake_github):
        fake_github.reviews[(OWNER, REPO, 1)] = [
            _review("alice", "APPROVED", "2024-01-01T10:00:00Z"),
            _review("alice", "COMMENTED", "2024-01-02T10:00:00Z"),
            _review("bob", "CHANGES_REQUESTED", "2024-01-01T10:00:00Z"),
            _review("bob", "DISMISSED", "2024-01-02T10:00:00Z"),
        ]

        summary = get_approval_counts(fake_github, OWNER, REPO, 1)

        assert (summary.approval_count, summary.change_request_count) == (1, 0)

    def test_no_reviews(self, fake_github):
        assert get_approval_counts(fake_github, OWNER, REPO, 1).approval_count == 0


class TestDetectConflicts:
    def _unmergeable(self, fake, base_files, pr_files):
        fake.add_pull(4, "topic", mergeable=False)
        fake.set_compare("main", "topic", "diverged", merge_base="mb")
        fake.set_compare("mb", "main", "ahead", files=base_files)
        fake.set_compare("mb", "topic", "ahead", files=pr_files)

    def test_intersection_partitioned_by_submodule(self, fake_github):
        self._unmergeable(
            fake_github,
            base_files=["vendor/libfoo", "README.md", "docs/only-base.md"],
            pr_files=["vendor/libfoo", "README.md", "src/only-pr.py"],
        )

        report = detect_conflicts(fake_github, OWNER, REPO, 4, submodule_paths=["vendor/libfoo"])

        assert report.files_with_conflicts == ["vendor/libfoo", "README.md"]
        assert report.submodule_conflicts == ["vendor/libfoo"]
        assert report.non_submodule_conflicts == ["README.md"]
        assert report.approximate is True
        assert report.is_fatal

    def test_only_submodule_conflicts_are_not_fatal(self, fake_github):
        self._unmergeable(fake_github, base_files=["vendor/libfoo"], pr_files=["vendor/libfoo"])

        report = detect_conflicts(fake_github, OWNER, REPO, 4, submodule_paths=["vendor/libfoo"])

        assert report.submodule_conflicts == ["vendor/libfoo"]
        assert not report.is_fatal

    def test_warns_when_file_listing_hits_the_limit(self, fake_github, caplog):
        base_files = [f"gen/file{i}.txt" for i in range(COMPARE_FILE_LIMIT)]
        self._unmergeable(fake_github, base_files=base_files, pr_files=["gen/file0.txt"])

        with caplog.at_level("WARNING"):
            report = detect_conflicts(fake_github, OWNER, REPO, 4)

        assert report.files_with_conflicts == ["gen/file0.txt"]
        assert "compare listing limit" in caplog.text

    def test_no_limit_warning_for_small_listings(self, fake_github, caplog):
        self._unmergeable(fake_github, base_files=["README.md"], pr_files=["README.md"])

        with caplog.at_level("WARNING"):
            detect_conflicts(fake_github, OWNER, REPO, 4)

        assert "compare listing limit" not in caplog.text

    def test_mergeable_pr_reports_nothing(self, fake_github):
        fake_github.add_pull(4, "topic", mergeable=True)

        report = detect_conflicts(fake_github, OWNER, REPO, 4)

        assert report.files_with_conflicts == []
        assert report.mergeable is True
        assert "compare" not in fake_github.calls

    def test_unknown_mergeability_reports_nothing(self, fake_github):
        fake_github.add_pull(4, "topic", mergeable=None)

        report = detect_conflicts(fake_github, OWNER, REPO, 4)

        assert report.as_dict()["mergeable"] is None
        assert report.files_with_conflicts == []

    def test_not_diverged(self, fake_github):
        fake_github.add_pull(4, "topic", mergeable=False)
        fake_github.set_compare("main", "topic", "behind")

        report = detect_conflicts(fake_github, OWNER, REPO, 4)

        assert report.files_with_conflicts == []
        assert report.approximate is False


class TestComments:
    def test_append_keeps_existing_text(self, fake_github):
        fake_github.comments[(OWNER, REPO, 77)] = {"id": 77, "body": "Build started", "issue": 3}

        append_to_comment(fake_github, OWNER, REPO, 77, "Squash: success")

        assert fake_github.comments[(OWNER, REPO, 77)]["body"] == "Build started\nSquash: success"

    def test_append_to_empty_comment(self, fake_github):
        fake_github.comments[(OWNER, REPO, 77)] = {"id": 77, "body": None, "issue": 3}

        append_to_comment(fake_github, OWNER, REPO, 77, "first line")

        assert fake_github.comments[(OWNER, REPO, 77)]["body"] == "first line"

    def test_find_comment_by_marker(self, fake_github):
        fake_github.comments[(OWNER, REPO, 1)] = {"id": 1, "body": "<!-- ci-status --> old", "issue": 3}
        fake_github.comments[(OWNER, REPO, 2)] = {"id": 2, "body": "unrelated", "issue": 3}
        fake_github.comments[(OWNER, REPO, 5)] = {"id": 5, "body": "<!-- ci-status --> new", "issue": 3}

        assert find_comment(fake_github, OWNER, REPO, 3, "<!-- ci-status -->") == 5
        assert find_comment(fake_github, OWNER, REPO, 3, "missing") is None
