"""Redis Lua script for the distributed token bucket.

The script runs inside Redis, which executes it atomically: no other
command from any client interleaves between its read and its write, so
two instances can never both spend the same token.
"""

import hashlib

# KEYS[1]: bucket key (hash with fields "tokens" and "last_refill")
# ARGV: rate_per_second, burst, now_seconds, cost
# Returns {allowed, remaining, retry_after, reset_time}. Reals are returned
# as strings because Redis truncates Lua numbers to integers in replies
# and stringifies them with 14 significant digits when stored.
TOKEN_BUCKET_SCRIPT = """
    local key = KEYS[1]
    local rate = tonumber(ARGV[1])
    local burst = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local cost = tonumber(ARGV[4])

    local state = redis.call('HMGET', key, 'tokens', 'last_refill')
    local tokens = tonumber(state[1])
    local last_refill = tonumber(state[2])

    -- Missing state is a full bucket refilled at now
    if tokens == nil or last_refill == nil then
        tokens = burst
        last_refill = now
    end

    local elapsed = now - last_refill
    if elapsed < 0 then
        elapsed = 0
    end
    tokens = math.min(burst, tokens + elapsed * rate)

    local allowed = 0
    local retry_after = 0
    if tokens >= cost then
        tokens = tokens - cost
        allowed = 1
    else
        retry_after = (cost - tokens) / rate
    end

    redis.call('HSET', key, 'tokens', string.format('%.17g', tokens), 'last_refill', ARGV[3])

    -- Expire once a drained bucket would be full again
    local ttl = math.ceil(burst / rate)
    if ttl < 1 then
        ttl = 1
    end
    redis.call('EXPIRE', key, ttl)

    return {
        allowed,
        math.floor(tokens),
        string.format('%.17g', retry_after),
        string.format('%.6f', now + retry_after),
    }
"""

# Content address Redis assigns to the script on SCRIPT LOAD
TOKEN_BUCKET_SHA = hashlib.sha1(TOKEN_BUCKET_SCRIPT.encode("utf-8")).hexdigest()
