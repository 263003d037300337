"""Redis Lua scripts for distributed rate limiting.

Each script runs as one atomic operation on the Redis server, so concurrent
checks for the same key from any number of instances are serialized and a
check-then-act race cannot admit more than the limit.

Both scripts take the current time in ARGV[3]. An empty value makes the
script read the Redis server clock instead, so every instance shares one
clock. Both return {allowed, retry_after_seconds, count}.
"""

# Fixed window: one counter per epoch-aligned bucket, suffixed with the
# bucket start. The expiry is only set by the request that created the
# counter, so later increments cannot extend the bucket's life.
FIXED_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local window = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])

    if not now then
        local t = redis.call('TIME')
        now = tonumber(t[1]) + tonumber(t[2]) / 1000000
    end

    local window_start = math.floor(now / window) * window
    local bucket_key = key .. ':' .. string.format('%d', window_start)

    local count = redis.call('INCR', bucket_key)
    if count == 1 then
        redis.call('EXPIRE', bucket_key, window)
    end

    if count <= max_requests then
        return {1, 0, count}
    end

    local retry_after = math.ceil(window_start + window - now)
    if retry_after > window then
        retry_after = window
    end
    return {0, retry_after, count}
"""

# Sliding window: a sorted set of accepted request timestamps. Members are
# made unique with a per-request token so identical timestamps both count.
SLIDING_WINDOW_SCRIPT = """
    local key = KEYS[1]
    local window = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local token = ARGV[4]

    if not now then
        local t = redis.call('TIME')
        now = tonumber(t[1]) + tonumber(t[2]) / 1000000
    end

    local cutoff = string.format('%.6f', now - window)
    redis.call('ZREMRANGEBYSCORE', key, '-inf', cutoff)
    local count = redis.call('ZCARD', key)

    if count < max_requests then
        local score = string.format('%.6f', now)
        redis.call('ZADD', key, score, score .. '-' .. token)
        redis.call('EXPIRE', key, window)
        return {1, 0, count + 1}
    end

    local retry_after = window
    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    if oldest[2] then
        retry_after = math.ceil(tonumber(oldest[2]) + window - now)
        if retry_after > window then
            retry_after = window
        end
        if retry_after < 0 then
            retry_after = 0
        end
    end
    return {0, retry_after, count}
"""
