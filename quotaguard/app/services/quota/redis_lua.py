"""Redis Lua scripts for windowed quota counting.

The whole read-compare-increment runs inside one script so no other client
can observe or interleave with an intermediate state.
"""

# KEYS[1]: quota key
# ARGV[1]: window length in milliseconds
# ARGV[2]: limit, or the string "nil" when no limit applies
# ARGV[3]: delta
#
# The expiry is attached only when INCRBY created the counter (the new value
# equals delta), so later calls never move the end of the window.
INCREMENT_SCRIPT = """
    local limit = tonumber(ARGV[2])
    local delta = tonumber(ARGV[3])
    local current = redis.call('GET', KEYS[1])

    -- Pure read: never create a counter
    if delta == 0 then
        return tonumber(current) or 0
    end

    -- Already at the limit: report the simulated usage without writing
    if current and limit and tonumber(current) >= limit then
        return tonumber(current) + delta
    end

    -- Fresh window with a zero limit: nothing to count yet
    if (not current) and limit and limit <= 0 then
        return delta
    end

    local count = redis.call('INCRBY', KEYS[1], delta)

    if count == delta then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end

    return count
"""
