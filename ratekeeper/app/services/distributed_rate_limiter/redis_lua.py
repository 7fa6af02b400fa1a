"""Redis Lua scripts for the bucket store.

Redis runs each script atomically, so the version check and the write below
cannot be interleaved with another instance's write.
"""

# Lua script for a version-conditioned update (compare-and-swap)
# Returns {1, new_version} on success, {0, stored_version} on a version
# mismatch and {-1, -1} when the bucket no longer exists (expired)
CONDITIONAL_UPDATE_SCRIPT = """
    local bucket_key = KEYS[1]
    local expected_version = tonumber(ARGV[1])
    local payload = ARGV[2]
    local expire_at = tonumber(ARGV[3])

    local current = redis.call('GET', bucket_key)
    if not current then
        return {-1, -1}
    end

    local stored = cjson.decode(current)
    local stored_version = tonumber(stored['version'])
    if stored_version ~= expected_version then
        return {0, stored_version}
    end

    redis.call('SET', bucket_key, payload)
    redis.call('EXPIREAT', bucket_key, expire_at)

    local written = cjson.decode(payload)
    return {1, tonumber(written['version'])}
"""
