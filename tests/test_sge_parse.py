from datetime import datetime

import pytest

from gridbridge.entities import DeletedJobInfo, HealthStatus, JobStateCategory
from gridbridge.errors import JobNotFound, MalformedOutput, SchedulerUnreachable, UnrecognizedStatus
from gridbridge.sge.parse import (
    parse_deleted_jobs,
    parse_health,
    parse_hosts,
    parse_job_state,
    parse_jobs,
    parse_queue,
    parse_queue_names,
    parse_slots,
    parse_submitted_job_id,
)


QSTAT_XML = """
    <?xml version='1.0'?>
    <job_info xmlns:xsd="http://arc.liv.ac.uk/repos/darcs/sge/source/dist/util/resources/schemas/qstat/qstat.xsd">
      <queue_info>
        <job_list state="running">
          <JB_job_number>7</JB_job_number>
          <JAT_prio>0.55500</JAT_prio>
          <JB_name>test.sh</JB_name>
          <JB_owner>alice</JB_owner>
          <state>r</state>
          <JAT_start_time>2022-05-10T10:01:00.123</JAT_start_time>
          <queue_name>main.q@node1</queue_name>
          <slots>1</slots>
        </job_list>
      </queue_info>
      <job_info>
        <job_list state="pending">
          <JB_job_number>8</JB_job_number>
          <JAT_prio>0.00000</JAT_prio>
          <JB_name>other</JB_name>
          <JB_owner>bob</JB_owner>
          <state>qw</state>
          <JB_submission_time>2022-05-10T10:00:00</JB_submission_time>
          <queue_name></queue_name>
          <slots>2</slots>
        </job_list>
      </job_info>
    </job_info>
"""

QHOST_XML = """
    <?xml version='1.0'?>
    <qhost xmlns:xsd="http://arc.liv.ac.uk/repos/darcs/sge/source/dist/util/resources/schemas/qhost/qhost.xsd">
     <host name='global'>
       <hostvalue name='arch_string'>-</hostvalue>
       <hostvalue name='num_proc'>-</hostvalue>
       <hostvalue name='m_socket'>-</hostvalue>
       <hostvalue name='m_core'>-</hostvalue>
       <hostvalue name='m_thread'>-</hostvalue>
       <hostvalue name='mem_total'>-</hostvalue>
       <hostvalue name='mem_used'>-</hostvalue>
     </host>
     <host name='node1'>
       <hostvalue name='arch_string'>lx-amd64</hostvalue>
       <hostvalue name='num_proc'>8</hostvalue>
       <hostvalue name='m_socket'>1</hostvalue>
       <hostvalue name='m_core'>4</hostvalue>
       <hostvalue name='m_thread'>8</hostvalue>
       <hostvalue name='load_avg'>0.01</hostvalue>
       <hostvalue name='mem_total'>8.0G</hostvalue>
       <hostvalue name='mem_used'>1.5G</hostvalue>
     </host>
    </qhost>
"""

QCONF_SQ = """
    qname                 main.q
    hostlist              @allhosts node1 \\
                          node2
    seq_no                0
    slots                 1,[node1=4],[node2=8]
    user_lists            NONE
"""

QPING = """
    05/10/2022 10:00:00:
    SIRM version:             0.1
    SIRM message id:          1
    start time:               05/09/2022 09:30:12 (1652088612)
    run time [s]:             88188
    messages in read buffer:  0
    messages in write buffer: 0
    nr. of connected clients: 4
    status:                   0
    info:                     MAIN: R (88188.33) | signaler000: R (0.33) | OK
"""


def test_qstat_jobs(make_result):
    running, pending = parse_jobs(make_result(QSTAT_XML))

    assert running.id == 7 and running.owner == "alice" and running.name == "test.sh"
    assert running.state.category is JobStateCategory.RUNNING and running.state.native == "r"
    assert running.queue == "main.q" and running.nodes == ("node1",)
    assert running.start_time == datetime(2022, 5, 10, 10, 1, 0)
    assert running.priority == pytest.approx(0.555)

    assert pending.id == 8 and pending.state.category is JobStateCategory.PENDING
    assert pending.queue is None and pending.nodes == () and pending.slots == 2
    assert pending.submission_time == datetime(2022, 5, 10, 10, 0, 0)


def test_qstat_empty_and_broken(make_result):
    assert parse_jobs(make_result("")) == []
    with pytest.raises(MalformedOutput):
        parse_jobs(make_result("<job_info><job_list>"))


@pytest.mark.parametrize(
    "code, category",
    [
        ("qw", JobStateCategory.PENDING),
        ("hqw", JobStateCategory.PENDING),
        ("r", JobStateCategory.RUNNING),
        ("t", JobStateCategory.RUNNING),
        ("Rr", JobStateCategory.RUNNING),
        ("s", JobStateCategory.SUSPENDED),
        ("S", JobStateCategory.SUSPENDED),
        ("Eqw", JobStateCategory.FAILED),
        ("dr", JobStateCategory.FAILED),
        ("", JobStateCategory.UNKNOWN),
    ],
)
def test_sge_state_codes(code, category):
    assert parse_job_state(code).category is category


def test_qsub_job_id(make_result):
    assert parse_submitted_job_id(make_result('Your job 7 ("test.sh") has been submitted')) == 7
    assert parse_submitted_job_id(make_result('Your job-array 9.1-3:1 ("arr") has been submitted')) == 9
    with pytest.raises(MalformedOutput):
        parse_submitted_job_id(make_result("qsub: ERROR! invalid option"))


def test_qdel_excludes_denied_jobs(make_result):
    result = make_result(
        stdout="""
            alice has registered the job 5 for deletion
            alice has deleted job 6
            alice has registered the job 9 for deletion
        """,
        stderr='denied: job "9" does not exist',
    )
    assert parse_deleted_jobs(result, "alice") == [
        DeletedJobInfo(id=5, owner="alice"),
        DeletedJobInfo(id=6, owner="alice"),
    ]


def test_qdel_nothing_deleted(make_result):
    with pytest.raises(JobNotFound):
        parse_deleted_jobs(make_result(stderr='denied: job "9" does not exist', exit_code=1), "alice")


def test_qhost_skips_global(make_result):
    (host,) = parse_hosts(make_result(QHOST_XML))
    assert host.name == "node1" and host.arch == "lx-amd64"
    assert (host.cpu_total, host.sockets, host.cores_per_socket, host.threads_per_core) == (8, 1, 4, 2)
    assert host.physical_memory == 8 * 1024 ** 3
    assert host.allocated_memory == 1610612736


def test_qhost_missing_value(make_result):
    with pytest.raises(MalformedOutput, match="mem_used"):
        parse_hosts(make_result(QHOST_XML.replace("<hostvalue name='mem_used'>1.5G</hostvalue>", "")))


def test_queue_names(make_result):
    assert parse_queue_names(make_result("all.q\n\nmain.q")) == ["all.q", "main.q"]


def test_queue_configuration(make_result):
    queue = parse_queue(make_result(QCONF_SQ))
    assert queue.name == "main.q"
    assert queue.host_list == ("@allhosts", "node1", "node2")
    assert queue.allowed_user_groups == ()
    assert queue.slots.total_slots == 12
    assert queue.slots.per_host_slots == {"node1": 4, "node2": 8}


def test_slots_without_per_host_detail():
    slots = parse_slots("4")
    assert slots.total_slots == 4 and slots.per_host_slots == {}


def test_qping_health(make_result):
    info = parse_health(make_result(QPING))
    assert info.status is HealthStatus.OK and info.code == 0
    assert info.start_time == datetime(2022, 5, 9, 9, 30, 12)
    assert info.check_time == datetime(2022, 5, 10, 10, 0, 0)
    assert info.info == "MAIN: R (88188.33) | signaler000: R (0.33) | OK"


def test_qping_garbage_check_time_is_malformed(make_result):
    with pytest.raises(MalformedOutput) as exc:
        parse_health(make_result(QPING.replace("05/10/2022 10:00:00:", "garbage header", 1)))
    assert exc.value.line == "garbage header"
    assert exc.value.details["expected"] == "%m/%d/%Y %H:%M:%S:"


def test_qping_error_status(make_result):
    assert parse_health(make_result(QPING.replace("status:                   0", "status: 2"))).status is HealthStatus.DOWN
    with pytest.raises(UnrecognizedStatus):
        parse_health(make_result(QPING.replace("status:                   0", "status: 1")))


def test_qping_unreachable(make_result):
    result = make_result(
        stdout="endpoint head/qmaster/1 at port 6444: can't find connection",
        stderr="got select error: Connection refused",
        exit_code=1,
    )
    with pytest.raises(SchedulerUnreachable):
        parse_health(result)
