"""
Tests for the branch lifecycle and store/git synchronization.

These run real git commands against working copies in a temporary directory
and a local bare repository standing in for the remote.
"""

import shutil
import tempfile
from unittest.mock import MagicMock, patch

import pytest
from git import Actor as GitActor, Repo

from repotree.errors import ExternalProcessError, RemoteProvisioningError
from repotree.models import MAIN_BRANCH, Actor
from repotree.versioning import WorkingCopy


pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


@pytest.fixture
def seeded(repotree):
    """A repository whose main branch holds one doc with one block."""
    rid = repotree.db.create_repository("Handbook").rid
    guide = repotree.db.add_doc(rid, MAIN_BRANCH, "Guide", content="Intro")
    repotree.db.add_block(rid, MAIN_BRANCH, guide.did, "setup", content="steps")
    return rid


def titles(repotree, rid, branch):
    return sorted(doc.title for doc in repotree.db.list_docs(rid, branch))


class TestBranchLifecycle:

    def test_new_branch_is_ahead_of_empty_remote(self, repotree, seeded, bare_remote):
        created = repotree.branches.create_branch(seeded, "exp")
        committed = repotree.sync.commit(seeded, "exp")
        result = repotree.sync.status(seeded, "exp", remote_url=str(bare_remote))

        assert created.success
        assert (created.data["docs"], created.data["blocks"]) == (1, 1)
        # The branch was forked from a snapshot of main; nothing new to commit
        assert committed.success
        assert committed.data["commit"] is None

        status = result.data["status"]
        assert status["hasLocalRepo"]
        assert status["hasLocalBranch"]
        assert status["hasRemote"]
        assert not status["hasRemoteBranch"]
        assert status["localCommits"] == 1
        assert status["ahead"] == 1
        assert status["behind"] == 0
        assert not status["uncommittedChanges"]
        assert status["currentBranch"] == "exp"

    def test_create_branch_updates_repository(self, repotree, seeded):
        repotree.branches.create_branch(seeded, "exp")

        repository = repotree.db.get_repository(seeded)
        listed = repotree.branches.list_branches(seeded)

        assert repository.current_branch == "exp"
        assert repository.branches == [MAIN_BRANCH, "exp"]
        assert listed.data == {"branches": [MAIN_BRANCH, "exp"], "current_branch": "exp"}

    def test_create_branch_rules(self, repotree, seeded):
        assert repotree.branches.create_branch(seeded, "exp").success

        from_branch = repotree.branches.create_branch(seeded, "other")
        repotree.branches.switch_branch(seeded, MAIN_BRANCH)
        duplicate = repotree.branches.create_branch(seeded, "exp")
        reserved = repotree.branches.create_branch(seeded, MAIN_BRANCH)
        invalid = repotree.branches.create_branch(seeded, "bad..name")

        assert not from_branch.success
        assert "only be created from" in from_branch.message
        assert not duplicate.success
        assert "already exists" in duplicate.message
        assert not reserved.success
        assert not invalid.success
        assert repotree.db.get_repository(seeded).branches == [MAIN_BRANCH, "exp"]

    def test_switch_branch(self, repotree, seeded):
        repotree.branches.create_branch(seeded, "exp")

        back = repotree.branches.switch_branch(seeded, MAIN_BRANCH)
        unknown = repotree.branches.switch_branch(seeded, "ghost")

        assert back.success
        assert repotree.db.get_repository(seeded).current_branch == MAIN_BRANCH
        assert not unknown.success

    def test_branches_are_isolated(self, repotree, seeded):
        repotree.branches.create_branch(seeded, "exp")
        main_doc = repotree.db.list_docs(seeded, MAIN_BRANCH)[0]
        exp_doc = repotree.db.list_docs(seeded, "exp")[0]

        result = repotree.engine.apply(seeded, "exp", {
            "updates": [{"type": "doc", "did": exp_doc.did, "title": "Renamed"}]
        })

        assert result.success
        assert exp_doc.did != main_doc.did
        assert titles(repotree, seeded, "exp") == ["Renamed"]
        assert titles(repotree, seeded, MAIN_BRANCH) == ["Guide"]

    def test_main_rejects_structural_edits(self, repotree, seeded):
        batch = repotree.engine.apply(seeded, MAIN_BRANCH, {"creates": [{"type": "doc", "title": "X"}]})
        tool = repotree.tools.run(seeded, {"operation": "create_doc", "args": {"title": "X"}})

        assert not batch.success
        assert not tool.success
        assert "read-only" in tool.message
        assert titles(repotree, seeded, MAIN_BRANCH) == ["Guide"]


class TestCommit:

    def test_commit_is_idempotent(self, repotree, seeded):
        repotree.branches.create_branch(seeded, "exp")
        actor = Actor(id=7, name="alice")

        applied = repotree.engine.apply(
            seeded, "exp", {"creates": [{"type": "doc", "title": "Notes"}], "message": "add notes"}, actor=actor
        )
        again = repotree.sync.commit(seeded, "exp", actor=actor)

        report = applied.data["report"]
        assert report["synced"] is True
        assert report["commit"]
        assert again.success
        assert again.data["commit"] is None
        last = repotree.vcs.open(seeded).last_commit("exp")
        assert last.message == "system/7/alice: add notes"

    def test_failed_commit_marks_branch_unsynced(self, repotree, seeded):
        repotree.branches.create_branch(seeded, "exp")

        failure = ExternalProcessError("git commit failed", command="commit")
        with patch.object(WorkingCopy, "commit_if_dirty", side_effect=failure):
            result = repotree.engine.apply(seeded, "exp", {"creates": [{"type": "doc", "title": "Draft"}]})

        assert result.success
        assert result.data["report"]["synced"] is False
        assert "Commit failed" in result.message
        assert "Draft" in titles(repotree, seeded, "exp")
        assert repotree.db.get_branch_state(seeded, "exp").unsynced
        assert repotree.sync.status(seeded, "exp").data["status"]["unsynced"] is True

        retry = repotree.sync.commit(seeded, "exp")

        assert retry.success
        assert retry.data["commit"]
        state = repotree.db.get_branch_state(seeded, "exp")
        assert not state.unsynced
        assert state.last_commit == retry.data["commit"]

    def test_commit_with_colliding_names(self, repotree, seeded):
        repotree.branches.create_branch(seeded, "exp")
        guide = repotree.db.list_docs(seeded, "exp")[0]

        result = repotree.engine.apply(seeded, "exp", {"creates": [
            {"type": "doc", "parentDid": guide.did, "title": "README.md"},
            {"type": "doc", "parentDid": guide.did, "title": "setup.md"},
        ]})

        assert result.data["report"]["synced"] is True
        working_tree = repotree.vcs.open(seeded).path
        assert (working_tree / "Guide" / "README.md" / ".keep").exists()
        assert (working_tree / "Guide" / "setup.md").is_dir()

    def test_failed_commit_removes_scratch_projection(self, repotree, seeded, tmp_path, monkeypatch):
        repotree.branches.create_branch(seeded, "exp")
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        monkeypatch.setattr(tempfile, "tempdir", str(scratch))

        failure = ExternalProcessError("git commit failed", command="commit")
        with patch.object(WorkingCopy, "commit_if_dirty", side_effect=failure):
            result = repotree.sync.commit(seeded, "exp")

        assert not result.success
        assert list(scratch.iterdir()) == []

    def test_status_without_working_copy(self, repotree, seeded):
        result = repotree.sync.status(seeded, MAIN_BRANCH)

        assert result.success
        assert result.data["status"]["hasLocalRepo"] is False
        assert result.data["status"]["ahead"] == 0


class TestRemoteSync:

    def test_push_creates_then_reuses_upstream(self, repotree, seeded, bare_remote):
        repotree.branches.create_branch(seeded, "exp")

        first = repotree.sync.push(seeded, "exp", remote_url=str(bare_remote))
        second = repotree.sync.push(seeded, "exp")
        status = repotree.sync.status(seeded, "exp").data["status"]

        assert first.success
        assert first.data["created_upstream"] is True
        assert second.success
        assert second.data["created_upstream"] is False
        assert repotree.db.get_repository(seeded).remote_url == str(bare_remote)
        assert status["hasRemoteBranch"]
        assert status["remoteCommits"] == status["localCommits"]
        assert (status["ahead"], status["behind"]) == (0, 0)

    def test_push_refusals(self, repotree, seeded, bare_remote):
        main_push = repotree.sync.push(seeded, MAIN_BRANCH, remote_url=str(bare_remote))
        no_remote = repotree.sync.push(seeded, "exp")
        no_commits = repotree.sync.push(seeded, "ghost", remote_url=str(bare_remote))

        assert not main_push.success
        assert not no_remote.success
        assert "no remote" in no_remote.message
        assert not no_commits.success

    def test_pull_replaces_store_branch(self, repotree, seeded, bare_remote):
        repotree.branches.create_branch(seeded, "exp")
        repotree.sync.push(seeded, "exp", remote_url=str(bare_remote))
        repotree.db.clear_branch(seeded, "exp")
        repotree.db.add_doc(seeded, "exp", "Stray")

        result = repotree.sync.pull(seeded, "exp")

        assert result.success
        assert (result.data["docs"], result.data["blocks"]) == (1, 1)
        assert titles(repotree, seeded, "exp") == ["Guide"]
        assert repotree.db.list_blocks(seeded, "exp")[0].content == "steps"

    def test_pull_into_fresh_repository(self, repotree, seeded, bare_remote):
        repotree.branches.create_branch(seeded, "exp")
        repotree.sync.push(seeded, "exp", remote_url=str(bare_remote))
        other = repotree.db.create_repository("Handbook").rid

        result = repotree.sync.pull(other, "exp", remote_url=str(bare_remote))

        repository = repotree.db.get_repository(other)
        assert result.success
        assert titles(repotree, other, "exp") == ["Guide"]
        assert "exp" in repository.branches
        assert repository.remote_url == str(bare_remote)
        # The root README only carried the default heading
        assert repository.description == ""

    def test_pull_missing_remote_branch(self, repotree, seeded, bare_remote):
        result = repotree.sync.pull(seeded, "exp", remote_url=str(bare_remote))

        assert not result.success
        assert "not found" in result.message

    def test_status_counts_remote_commits_behind(self, repotree, seeded, bare_remote, tmp_path):
        repotree.branches.create_branch(seeded, "exp")
        repotree.sync.push(seeded, "exp", remote_url=str(bare_remote))

        other = Repo.clone_from(str(bare_remote), str(tmp_path / "other"), branch="exp")
        (tmp_path / "other" / "Extra.md").write_text("from elsewhere", encoding="utf-8")
        other.index.add(["Extra.md"])
        author = GitActor("someone", "someone@example.com")
        other.index.commit("remote edit", author=author, committer=author)
        other.remote("origin").push("exp")

        status = repotree.sync.status(seeded, "exp").data["status"]

        assert (status["ahead"], status["behind"]) == (0, 1)
        assert status["remoteCommits"] == status["localCommits"] + 1

    def test_status_estimates_when_counting_fails(self, repotree, seeded, bare_remote):
        repotree.branches.create_branch(seeded, "exp")
        repotree.sync.push(seeded, "exp", remote_url=str(bare_remote))
        repotree.engine.apply(seeded, "exp", {"creates": [{"type": "doc", "title": "Local"}]})

        failure = ExternalProcessError("git rev-list failed", command="rev-list")
        with patch.object(WorkingCopy, "ahead_behind", side_effect=failure):
            status = repotree.sync.status(seeded, "exp").data["status"]

        assert (status["localCommits"], status["remoteCommits"]) == (2, 1)
        assert (status["ahead"], status["behind"]) == (1, 0)

    def test_failed_pull_import_keeps_store_branch(self, repotree, seeded, bare_remote):
        repotree.branches.create_branch(seeded, "exp")
        repotree.sync.push(seeded, "exp", remote_url=str(bare_remote))

        def half_import(rid, branch, source):
            repotree.db.add_doc(rid, branch, "Half")
            raise RuntimeError("unreadable tree")

        with patch.object(repotree.sync.importer, "import_tree", side_effect=half_import):
            result = repotree.sync.pull(seeded, "exp")

        assert not result.success
        assert "unreadable tree" in result.message
        assert titles(repotree, seeded, "exp") == ["Guide"]
        assert repotree.db.list_blocks(seeded, "exp")[0].content == "steps"
        assert repotree.db.get_branch_state(seeded, "exp").unsynced

    def test_attach_remote_adopts_empty_history(self, repotree, seeded, bare_remote):
        result = repotree.sync.attach_remote(seeded, str(bare_remote))

        assert result.success
        assert result.data["adopted"] is True
        assert repotree.db.get_repository(seeded).remote_url == str(bare_remote)
        assert repotree.vcs.open(seeded).get_remote_url() == str(bare_remote)

    def test_provision_remote_attaches_clone_url(self, repotree, seeded, bare_remote):
        provider = MagicMock()
        provider.repository_name.return_value = "handbook"
        provider.create_repository.return_value = str(bare_remote)

        result = repotree.sync.provision_remote(seeded, provider)

        assert result.success
        provider.create_repository.assert_called_once_with("handbook", "Handbook")
        assert repotree.db.get_repository(seeded).remote_url == str(bare_remote)

    def test_provision_remote_failure(self, repotree, seeded):
        provider = MagicMock()
        provider.create_repository.side_effect = RemoteProvisioningError("GitHub API error: 403")

        result = repotree.sync.provision_remote(seeded, provider, name="handbook")

        assert not result.success
        assert "403" in result.message
        assert repotree.db.get_repository(seeded).remote_url is None


def test_import_directory_seeds_main(repotree, tmp_path):
    rid = repotree.db.create_repository("Handbook").rid
    source = tmp_path / "seed"
    (source / "Guide").mkdir(parents=True)
    (source / "README.md").write_text("Team handbook", encoding="utf-8")
    (source / "Guide" / "setup.md").write_text("steps", encoding="utf-8")

    result = repotree.import_directory(rid, source)

    assert result.success
    assert (result.data["docs"], result.data["blocks"]) == (1, 1)
    assert titles(repotree, rid, MAIN_BRANCH) == ["Guide"]
    assert repotree.db.get_repository(rid).description == "Team handbook"
    assert not repotree.import_directory(rid, tmp_path / "missing").success
