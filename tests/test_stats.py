"""
Tests for the usage accumulator and its error log.
"""
from grappa import should

from nimb.stats import ERROR_LOG_CAPACITY, UsageAccumulator


def test_record_request_counts_and_timestamps():
    stats = UsageAccumulator()
    stats.last_request_time | should.be.none

    stats.record_request()
    stats.record_request()

    stats.message_count | should.equal(2)
    isinstance(stats.last_request_time, str) | should.be.true


def test_add_usage_ignores_missing_and_bogus_counts():
    stats = UsageAccumulator()
    stats.add_usage({"prompt_tokens": 3, "completion_tokens": None, "total_tokens": "7"})
    stats.add_usage(None)
    stats.add_tokens(1, 2, 3)

    stats.prompt_tokens | should.equal(4)
    stats.completion_tokens | should.equal(2)
    stats.total_tokens | should.equal(3)


def test_error_log_is_most_recent_first():
    stats = UsageAccumulator()
    stats.record_error("first", 500)
    stats.record_error("second", 401)

    log = stats.snapshot()["errorLog"]
    [entry["message"] for entry in log] | should.equal(["second", "first"])
    log[0] | should.have.keys("timestamp", "message", "code")
    log[0]["code"] | should.equal(401)
    stats.error_count | should.equal(2)


def test_error_log_evicts_oldest_past_capacity():
    stats = UsageAccumulator()
    for i in range(ERROR_LOG_CAPACITY + 1):
        stats.record_error(f"error {i}", 500)

    log = stats.snapshot()["errorLog"]
    log | should.have.length(50)
    log[0]["message"] | should.equal("error 50")
    log[-1]["message"] | should.equal("error 1")
    stats.error_count | should.equal(51)


def test_reset_zeroes_everything_and_restarts_clock():
    stats = UsageAccumulator()
    stats.start_time = "2000-01-01T00:00:00+00:00"
    stats.record_request()
    stats.add_tokens(1, 1, 2)
    stats.record_error("boom", 500)

    stats.reset()

    snapshot = stats.snapshot()
    snapshot | should.equal(
        {
            "messageCount": 0,
            "promptTokens": 0,
            "completionTokens": 0,
            "totalTokens": 0,
            "errorCount": 0,
            "lastRequestTime": None,
            "startTime": stats.start_time,
            "errorLog": [],
        }
    )
    snapshot["startTime"] | should.not_be.equal("2000-01-01T00:00:00+00:00")
