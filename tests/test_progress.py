from delivery.progress import COMPLETED, FAILED, UPLOADING, ProgressEntry, UploadProgressTracker


def test_listeners_get_cumulative_snapshots():
    tracker = UploadProgressTracker()
    seen = []
    tracker.add_listener(seen.append)

    tracker.set_progress(0, 50)
    tracker.set_progress(0, 100)

    assert len(seen) == 2
    assert [s[0].percent for s in seen] == [50, 100]
    assert seen[0] is not seen[1]
    assert seen[1][0].status == UPLOADING


def test_snapshot_covers_every_attachment():
    tracker = UploadProgressTracker()
    seen = []
    tracker.add_listener(seen.append)

    tracker.set_progress(0, 10)
    tracker.set_progress(1, 20)

    assert seen[-1] == {
        0: ProgressEntry(attachment_index=0, percent=10),
        1: ProgressEntry(attachment_index=1, percent=20),
    }


def test_progress_never_goes_backwards_and_is_clamped():
    tracker = UploadProgressTracker()
    tracker.set_progress(0, 60)
    tracker.set_progress(0, 40)
    assert tracker.get_progress(0) == 60

    tracker.set_progress(1, 150)
    tracker.set_progress(2, -5)
    assert tracker.get_progress(1) == 100
    assert tracker.get_progress(2) == 0
    assert tracker.get_progress(9) == 0


def test_terminal_entries_ignore_further_reports():
    tracker = UploadProgressTracker()
    tracker.set_progress(0, 40)
    tracker.mark_failed(0, "connection reset")
    tracker.set_progress(0, 90)
    tracker.mark_completed(0)

    entry = tracker.snapshot()[0]
    assert entry.status == FAILED
    assert entry.percent == 40
    assert entry.error == "connection reset"


def test_full_upload_stays_uploading_until_marked():
    tracker = UploadProgressTracker()
    tracker.set_progress(0, 50)
    tracker.set_progress(0, 100)
    assert tracker.snapshot()[0] == ProgressEntry(attachment_index=0, percent=100, status=UPLOADING)

    tracker.mark_failed(0, "recipient unknown")
    entry = tracker.snapshot()[0]
    assert entry.status == FAILED
    assert entry.percent == 100
    assert entry.error == "recipient unknown"


def test_mark_completed():
    tracker = UploadProgressTracker()
    tracker.set_progress(3, 70)
    tracker.mark_completed(3)
    assert tracker.snapshot()[3] == ProgressEntry(attachment_index=3, percent=100, status=COMPLETED)


def test_clear_notifies_once_with_empty_map():
    tracker = UploadProgressTracker()
    tracker.set_progress(0, 50)
    seen = []
    tracker.add_listener(seen.append)

    tracker.clear()

    assert seen == [{}]


def test_unsubscribe_removes_only_that_registration():
    tracker = UploadProgressTracker()
    first, second = [], []
    unsubscribe = tracker.add_listener(first.append)
    tracker.add_listener(first.append)
    tracker.add_listener(second.append)

    unsubscribe()
    unsubscribe()
    tracker.set_progress(0, 10)

    assert len(first) == 1
    assert len(second) == 1


def test_listeners_run_in_registration_order():
    tracker = UploadProgressTracker()
    order = []
    for name in ("a", "b", "c"):
        tracker.add_listener(lambda _snapshot, name=name: order.append(name))

    tracker.set_progress(0, 1)
    assert order == ["a", "b", "c"]


def test_listener_added_during_notification_waits_for_next_one():
    tracker = UploadProgressTracker()
    late = []

    def register_late(_snapshot):
        if not late:
            late.append("registered")
            tracker.add_listener(lambda snapshot: late.append(snapshot))

    tracker.add_listener(register_late)
    tracker.set_progress(0, 10)
    assert late == ["registered"]

    tracker.set_progress(0, 20)
    assert len(late) == 2


def test_failing_listener_does_not_stop_others():
    tracker = UploadProgressTracker()
    seen = []

    def broken(_snapshot):
        raise RuntimeError("boom")

    tracker.add_listener(broken)
    tracker.add_listener(seen.append)
    tracker.set_progress(0, 5)

    assert len(seen) == 1
