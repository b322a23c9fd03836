"""CUDA C source of the named vector kernels.

Compiled via NVRTC at first use. Every kernel takes float32 buffers and
int32 sizes; elementwise kernels use one thread per element.
"""

from __future__ import annotations

VECTOR_KERNELS = r"""
extern "C" {

#define ELEMENT_INDEX (blockIdx.x * blockDim.x + threadIdx.x)
#define NEG_INF __int_as_float(0xff800000)

__global__ void addScaler(float s, float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] += s;
}

__global__ void powScaler(float p, float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = powf(v[i], p);
}

__global__ void divElements(float* v, const float* d, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] /= d[i];
}

__global__ void elemMax(float* v, const float* o, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = fmaxf(v[i], o[i]);
}

__global__ void expElements(float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = expf(v[i]);
}

__global__ void logElements(float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = logf(v[i]);
}

__global__ void tanhElements(float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = tanhf(v[i]);
}

__global__ void sinElements(float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = sinf(v[i]);
}

__global__ void sigmoidElements(float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = 1.0f / (1.0f + expf(-v[i]));
}

__global__ void clipPositive(float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = fmaxf(0.0f, v[i]);
}

__global__ void lessThan(float a, float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = v[i] < a ? 1.0f : 0.0f;
}

__global__ void greaterThan(float a, float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = v[i] > a ? 1.0f : 0.0f;
}

__global__ void equalTo(float a, float* v, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] = v[i] == a ? 1.0f : 0.0f;
}

__global__ void addChunks(float* v, const float* s, int n, int chunkSize) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] += s[i / chunkSize];
}

__global__ void addRepeated(float* v, const float* r, int n, int rlen) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] += r[i % rlen];
}

__global__ void addRepeatedPow2(float* v, const float* r, int n, int mask) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] += r[i & mask];
}

__global__ void scaleRepeated(float* v, const float* r, int n, int rlen) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] *= r[i % rlen];
}

__global__ void scaleRepeatedPow2(float* v, const float* r, int n, int mask) {
    int i = ELEMENT_INDEX;
    if (i < n) v[i] *= r[i & mask];
}

__global__ void mapForward(float* out, const float* in, const int* table, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) out[i] = in[table[i]];
}

// Several table entries may name the same output, hence the atomic add.
__global__ void mapBackward(float* out, const float* in, const int* table, int n) {
    int i = ELEMENT_INDEX;
    if (i < n) atomicAdd(&out[table[i]], in[i]);
}

__global__ void mapMaxRows(int* table, const float* in, int rows, int cols) {
    int r = ELEMENT_INDEX;
    if (r >= rows) return;
    const float* row = in + (long long)r * cols;
    int best = 0;
    for (int c = 1; c < cols; c++) {
        if (row[c] > row[best]) best = c;
    }
    table[r] = r * cols + best;
}

// One block per (row, group). Each block reduces up to blockDim.x columns
// of its row to a single log-sum-exp. blockDim.x must be a power of two.
__global__ void logSumExpGroups(const float* in, float* out, int cols, int groups) {
    extern __shared__ float cache[];
    int tid = threadIdx.x;
    int row = blockIdx.x / groups;
    int group = blockIdx.x % groups;
    int col = group * blockDim.x + tid;

    float x = col < cols ? in[(long long)row * cols + col] : NEG_INF;
    cache[tid] = x;
    __syncthreads();
    for (int s = blockDim.x / 2; s > 0; s >>= 1) {
        if (tid < s) cache[tid] = fmaxf(cache[tid], cache[tid + s]);
        __syncthreads();
    }
    float m = cache[0];
    __syncthreads();
    if (isinf(m)) {
        if (tid == 0) out[blockIdx.x] = m;
        return;
    }

    cache[tid] = expf(x - m);
    __syncthreads();
    for (int s = blockDim.x / 2; s > 0; s >>= 1) {
        if (tid < s) cache[tid] += cache[tid + s];
        __syncthreads();
    }
    if (tid == 0) out[blockIdx.x] = m + logf(cache[0]);
}

}
"""

KERNEL_NAMES = frozenset({
    "addScaler",
    "powScaler",
    "divElements",
    "elemMax",
    "expElements",
    "logElements",
    "tanhElements",
    "sinElements",
    "sigmoidElements",
    "clipPositive",
    "lessThan",
    "greaterThan",
    "equalTo",
    "addChunks",
    "addRepeated",
    "addRepeatedPow2",
    "scaleRepeated",
    "scaleRepeatedPow2",
    "mapForward",
    "mapBackward",
    "mapMaxRows",
    "logSumExpGroups",
})
