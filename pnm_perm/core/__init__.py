"""核心數值元件：計算後端、線性求解器、D3Q19算法與體素化"""
