import json

from launchpad.services import OutputParser

SIMPLE_RUN = (
    "PLAY [demo] ***\n\n"
    "TASK [ping] ***\n"
    "ok: [host1]\n\n"
    "PLAY RECAP ***\n"
    "host1 : ok=1 changed=0 unreachable=0 failed=0 skipped=0 rescued=0 ignored=0\n"
)


def test_parse_simple_run():
    result = OutputParser.parse(SIMPLE_RUN)

    assert len(result.plays) == 1
    assert result.plays[0].name == "demo"
    tasks = result.plays[0].tasks
    assert len(tasks) == 1
    assert tasks[0].name == "ping"
    assert tasks[0].status == "ok"
    assert tasks[0].host == "host1"
    assert result.recap["host1"].model_dump() == {
        "ok": 1, "changed": 0, "unreachable": 0, "failed": 0,
        "skipped": 0, "rescued": 0, "ignored": 0,
    }


def test_truncated_json_keeps_status_and_host():
    output = (
        "PLAY [web] ***\n"
        "TASK [deploy] ***\n"
        'changed: [host2] => {"stdout": "partial", "msg": {\n'
        '    "nested": "value"\n'
    )
    task = OutputParser.parse(output).plays[0].tasks[0]

    assert task.status == "changed"
    assert task.host == "host2"
    assert task.stdout is None
    assert task.msg is None


def test_inline_json_result_is_applied():
    output = (
        "PLAY [web] ***\n"
        "TASK [shell] ***\n"
        'changed: [host1] => {"changed": true, "stdout": "hello", "stderr": "", "rc": 0}\n'
    )
    task = OutputParser.parse(output).plays[0].tasks[0]

    assert task.stdout == "hello"
    assert task.stderr is None
    assert task.result["rc"] == 0


def test_multiline_json_result_is_applied():
    output = (
        "PLAY [web] ***\n"
        "TASK [debug] ***\n"
        "ok: [host1] => {\n"
        '    "msg": "all good"\n'
        "}\n"
        "TASK [next] ***\n"
        "ok: [host1]\n"
    )
    tasks = OutputParser.parse(output).plays[0].tasks

    assert [t.name for t in tasks] == ["debug", "next"]
    assert tasks[0].msg == "all good"
    assert tasks[1].msg is None


def test_fatal_and_skipping_prefixes():
    output = (
        "PLAY [web] ***\n"
        "TASK [a] ***\n"
        "fatal: [host1]: FAILED! => {\"msg\": \"boom\"}\n"
        "TASK [b] ***\n"
        "skipping: [host1]\n"
    )
    tasks = OutputParser.parse(output).plays[0].tasks

    assert tasks[0].status == "failed"
    assert tasks[0].msg == "boom"
    assert tasks[1].status == "skipped"


def test_msg_marker_line():
    output = (
        "PLAY [web] ***\n"
        "TASK [debug] ***\n"
        "ok: [host1]\n"
        "msg: deployment finished\n"
    )
    task = OutputParser.parse(output).plays[0].tasks[0]
    assert task.msg == "deployment finished"


def test_stdout_marker_collects_continuation_lines():
    output = (
        "PLAY [web] ***\n"
        "TASK [shell] ***\n"
        "changed: [host1]\n"
        "stdout: first line\n"
        "second line\n"
        "PLAY RECAP ***\n"
    )
    task = OutputParser.parse(output).plays[0].tasks[0]
    assert task.stdout == "first line\nsecond line"


def test_each_host_gets_its_own_task_record():
    output = (
        "PLAY [web] ***\n"
        "TASK [ping] ***\n"
        "ok: [host1]\n"
        "changed: [host2]\n"
    )
    tasks = OutputParser.parse(output).plays[0].tasks

    assert [(t.name, t.host, t.status) for t in tasks] == [
        ("ping", "host1", "ok"),
        ("ping", "host2", "changed"),
    ]


def test_loop_items_reuse_the_host_record():
    output = (
        "PLAY [web] ***\n"
        "TASK [install] ***\n"
        "ok: [h1] => (item=a)\n"
        "ok: [h2] => (item=a)\n"
        "changed: [h1] => (item=b)\n"
        "ok: [h2] => (item=b)\n"
    )
    tasks = OutputParser.parse(output).plays[0].tasks

    assert [(t.name, t.host, t.status) for t in tasks] == [
        ("install", "h1", "changed"),
        ("install", "h2", "ok"),
    ]


def test_task_before_any_play_is_dropped():
    output = "TASK [orphan] ***\nok: [host1]\nPLAY [late] ***\n"
    result = OutputParser.parse(output)
    assert [p.name for p in result.plays] == ["late"]
    assert result.plays[0].tasks == []


def test_ansi_sequences_are_ignored():
    colored = SIMPLE_RUN.replace("ok: [host1]", "\x1b[0;32mok: [host1]\x1b[0m")
    assert OutputParser.parse(colored) == OutputParser.parse(SIMPLE_RUN)


def test_parse_is_deterministic():
    assert OutputParser.parse(SIMPLE_RUN) == OutputParser.parse(SIMPLE_RUN)


def test_garbage_input_gives_empty_result():
    result = OutputParser.parse("random noise\n{{{ not json\n}}}\n")
    assert result.plays == []
    assert result.recap is None
    assert OutputParser.parse("").plays == []


def test_json_document_status_precedence():
    document = {
        "plays": [{
            "play": {"name": "json play"},
            "tasks": [
                {"task": {"name": "install"}, "hosts": {
                    "h1": {"changed": True, "failed": True, "msg": "partial"},
                    "h2": {"changed": True, "unreachable": True},
                    "h3": {"skipped": True},
                    "h4": {"stdout": "fine"},
                }},
                {"task": {}, "hosts": {"h1": {}}},
            ],
        }],
        "stats": {"h1": {"ok": 2, "changed": 1, "failures": 1}},
    }
    result = OutputParser.parse("some preamble\n" + json.dumps(document))

    assert result.plays[0].name == "json play"
    statuses = {t.host: t.status for t in result.plays[0].tasks}
    assert statuses == {"h1": "failed", "h2": "changed", "h3": "skipped", "h4": "ok"}
    assert result.plays[0].tasks[0].msg == "partial"
    assert result.plays[0].tasks[3].stdout == "fine"
    assert result.recap["h1"].failed == 1
    assert result.recap["h1"].ok == 2
    assert result.recap["h1"].unreachable == 0


def test_invalid_json_document_falls_back_to_lines():
    output = '{"plays": [ broken\n' + SIMPLE_RUN
    result = OutputParser.parse(output)
    assert result.plays[0].name == "demo"


def test_summarize_totals_recap():
    output = SIMPLE_RUN + "host2 : ok=3 changed=2 unreachable=0 failed=1 skipped=0 rescued=0 ignored=0\n"
    summary = OutputParser.summarize(output)

    assert summary["ok"] == 4
    assert summary["changed"] == 2
    assert summary["failed"] == 1
    assert summary["hosts"] == 2
