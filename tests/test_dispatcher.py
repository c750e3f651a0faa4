"""
Dispatcher tests: lifecycle events enqueue fan-out jobs with the right shape.
"""

import pytest

from notifyhub.core.lifecycle import LifecycleHooks
from notifyhub.core.queue import FanOutJob, queue_name_for
from notifyhub.subscribers import RuleRegistry, SubscriptionEngine
from notifyhub.subscribers.dispatcher import Dispatcher, evaluate

from conftest import RecordingQueue
from domain import Comment, Favorite, Post


async def make_post(session, user):
    post = Post(user_id=user.id, title="Hello")
    session.add(post)
    await session.flush()
    return post


# ---------------------------------------------------------------------------
# evaluate
# ---------------------------------------------------------------------------

class TestEvaluate:
    async def test_missing_predicate_passes(self):
        assert await evaluate(None, 1, 2) is True

    async def test_sync_predicate(self):
        assert await evaluate(lambda x: x > 1, 2) is True
        assert await evaluate(lambda x: x > 1, 0) is False

    async def test_async_predicate(self):
        async def _pred(x):
            return x == "yes"

        assert await evaluate(_pred, "yes") is True
        assert await evaluate(_pred, "no") is False

    async def test_truthiness(self):
        assert await evaluate(lambda: []) is False
        assert await evaluate(lambda: "x") is True


# ---------------------------------------------------------------------------
# Enqueueing through lifecycle hooks
# ---------------------------------------------------------------------------

class TestDispatch:
    async def test_create_enqueues_one_job(self, session, make_user, engine, hooks, queue):
        user = await make_user()
        post = await make_post(session, user)

        comment = await hooks.create(session, Comment(user_id=user.id, post_id=post.id, body="hi"))

        assert len(queue.jobs) == 1
        priority, job = queue.jobs[0]
        assert priority == 1
        assert job == FanOutJob(
            notifier_type="Comment",
            notifier_id=comment.id,
            association="post",
            priority=1,
            method="notify_subscribers_of",
        )

    async def test_update_only_rule_ignores_create(self, session, make_user, engine, hooks, queue):
        user = await make_user()
        post = await hooks.create(session, Post(user_id=user.id, title="Hello"))
        assert queue.jobs == []

        await hooks.update(session, post, title="Edited")
        assert [(job.notifier_type, job.association) for _, job in queue.jobs] == [("Post", "self")]

    async def test_owner_rule_job_method(self, session, make_user, engine, hooks, queue):
        user = await make_user()
        post = await make_post(session, user)
        await hooks.create(session, Favorite(user_id=user.id, post_id=post.id))

        (_, job), = queue.jobs
        assert job.method == "notify_owner_of"

    async def test_priority_and_custom_method(self, session, make_user, hooks):
        registry = RuleRegistry()
        registry.register_subscribable(Post)
        registry.notifies_subscribers_of(Comment, "post", priority=3, **{"with": "fan_out_digest"})
        queue = RecordingQueue()
        SubscriptionEngine(registry, hooks, queue).install()

        user = await make_user()
        post = await make_post(session, user)
        await hooks.create(session, Comment(user_id=user.id, post_id=post.id))

        (priority, job), = queue.jobs
        assert priority == 3
        assert job.priority == 3
        assert job.method == "fan_out_digest"

    async def test_save_rule_fires_on_create_and_update(self, session, make_user):
        registry = RuleRegistry()
        registry.register_subscribable(Post)
        registry.notifies_subscribers_of(Post, "self", on="save")
        hooks = LifecycleHooks()
        queue = RecordingQueue()
        SubscriptionEngine(registry, hooks, queue).install()

        user = await make_user()
        post = await hooks.create(session, Post(user_id=user.id, title="Hello"))
        await hooks.update(session, post, title="Edited")
        assert len(queue.jobs) == 2

    async def test_each_rule_enqueues_independently(self, session, make_user):
        registry = RuleRegistry()
        registry.register_subscribable(Post)
        registry.notifies_subscribers_of(Favorite, "post", priority=2)
        registry.notifies_owner_of(Favorite, "post", priority=1)
        hooks = LifecycleHooks()
        queue = RecordingQueue()
        SubscriptionEngine(registry, hooks, queue).install()

        user = await make_user()
        post = await make_post(session, user)
        await hooks.create(session, Favorite(user_id=user.id, post_id=post.id))

        assert sorted((p, job.method) for p, job in queue.jobs) == [
            (1, "notify_owner_of"),
            (2, "notify_subscribers_of"),
        ]


# ---------------------------------------------------------------------------
# queue_if
# ---------------------------------------------------------------------------

class TestQueueIf:
    @pytest.fixture
    def setup(self, hooks):
        registry = RuleRegistry()
        registry.register_subscribable(Post)
        registry.notifies_subscribers_of(Comment, "post", queue_if=lambda comment: bool(comment.body))
        queue = RecordingQueue()
        SubscriptionEngine(registry, hooks, queue).install()
        return queue

    async def test_false_predicate_enqueues_nothing(self, session, make_user, hooks, setup):
        user = await make_user()
        post = await make_post(session, user)
        await hooks.create(session, Comment(user_id=user.id, post_id=post.id, body=""))
        assert setup.jobs == []

    async def test_true_predicate_enqueues(self, session, make_user, hooks, setup):
        user = await make_user()
        post = await make_post(session, user)
        await hooks.create(session, Comment(user_id=user.id, post_id=post.id, body="hi"))
        assert len(setup.jobs) == 1

    async def test_predicate_errors_propagate(self, session, make_user):
        def _boom(record):
            raise ValueError("bad predicate")

        registry = RuleRegistry()
        registry.notifies_subscribers_of(Comment, "post", queue_if=_boom)
        dispatcher = Dispatcher(registry, RecordingQueue())
        user = await make_user()
        post = await make_post(session, user)
        comment = Comment(user_id=user.id, post_id=post.id)
        with pytest.raises(ValueError):
            await dispatcher.dispatch(comment, "create")


class TestDispatcherDirect:
    async def test_dispatch_filters_by_event(self, session, make_user, registry):
        queue = RecordingQueue()
        dispatcher = Dispatcher(registry, queue)
        user = await make_user()
        post = await make_post(session, user)

        assert await dispatcher.dispatch(post, "create") == []
        jobs = await dispatcher.dispatch(post, "update")
        assert [job.association for job in jobs] == ["self"]


def test_queue_name_for():
    assert queue_name_for("notifyhub:fanout", 2) == "notifyhub:fanout:2"
